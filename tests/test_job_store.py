import json

import pytest

from app.types.contracts import LoopConfig, WebhookEndpoint


@pytest.mark.asyncio
async def test_insert_assigns_ids_and_defaults_active(store):
    first = await store.insert_reminder("u1", "c1", "one", 100)
    second = await store.insert_reminder("u1", "", "two", 50)

    assert second.id > first.id
    rows = await store.fetch_active_reminders()
    assert [r.message for r in rows] == ["two", "one"]
    assert all(r.active for r in rows)


@pytest.mark.asyncio
async def test_deactivated_rows_are_not_active(store):
    row = await store.insert_reminder("u1", "", "one", 100)
    await store.deactivate_reminder(row.id)

    assert await store.fetch_active_reminders() == []
    assert await store.count_reminders("u1") == 1


@pytest.mark.asyncio
async def test_save_loop_upserts_config(store):
    config = LoopConfig(channel_id="c1", message="a", hooks=[WebhookEndpoint(id="1", token="t")])
    await store.save_loop(config)
    await store.save_loop(config.model_copy(update={"message": "b"}), threads={"c1": "th1"})

    rows = await store.fetch_loops()
    assert len(rows) == 1
    assert json.loads(rows[0].config)["message"] == "b"
    assert json.loads(rows[0].threads) == {"c1": "th1"}
    assert await store.delete_loop("c1") == 1
    assert await store.delete_loop("c1") == 0
