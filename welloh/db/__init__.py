"""Account persistence."""

from .accounts_repo import SqliteAccountStore
from .base import AccountStore
from .schema import migrate_schema

__all__ = ["AccountStore", "SqliteAccountStore", "migrate_schema"]
