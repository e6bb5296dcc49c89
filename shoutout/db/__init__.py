"""Database layer for Shout Out with async SQLAlchemy."""

from shoutout.db.connection import get_db, get_session, get_session_factory, init_db
from shoutout.db.models import (
    AppStateModel,
    Base,
    CelebrationGifModel,
    CelebrationMessageModel,
    EstimateModel,
    PollLogModel,
    PricebookItemModel,
    SalespersonModel,
    WebhookLogModel,
    WebhookModel,
)

__all__ = [
    "Base",
    "EstimateModel",
    "PricebookItemModel",
    "SalespersonModel",
    "AppStateModel",
    "WebhookModel",
    "WebhookLogModel",
    "PollLogModel",
    "CelebrationGifModel",
    "CelebrationMessageModel",
    "get_db",
    "get_session",
    "get_session_factory",
    "init_db",
]
