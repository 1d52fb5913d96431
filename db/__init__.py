from .db import (
    Base,
    JobStore,
    Reminder,
    WebhookLoop,
    create_all,
    dispose_engine,
    get_engine,
    get_session,
    get_session_maker,
)  # noqa: F401
