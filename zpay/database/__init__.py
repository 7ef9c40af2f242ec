"""Database package for ZPay."""
from .connection import close_db, get_db, get_session_factory, init_db
from .models import (
    Account,
    ApiKey,
    Base,
    Session,
    Transaction,
    TransactionStatus,
    User,
    WebhookConfig,
)

__all__ = [
    "Base",
    "User",
    "Account",
    "Session",
    "ApiKey",
    "WebhookConfig",
    "Transaction",
    "TransactionStatus",
    "get_db",
    "get_session_factory",
    "init_db",
    "close_db",
]
