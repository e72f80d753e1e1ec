"""
Database schema for the SQLite account store.

Money columns are TEXT so Decimal values round-trip exactly.
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)


def migrate_schema(db_path: str) -> None:
    """
    Create all tables and indexes.

    This is safe to run multiple times - it only creates missing tables.
    """
    with sqlite3.connect(db_path) as conn:
        _create_accounts(conn)
        _create_holdings(conn)
        _create_transactions(conn)
        _create_watchlist(conn)
        _create_analysis_history(conn)
        _create_alerts(conn)
        conn.commit()

    logger.info("Schema migration completed for %s", db_path)


def _create_accounts(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS accounts (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE COLLATE NOCASE,
            password_hash TEXT NOT NULL,
            full_name TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'user',
            country TEXT,
            institution TEXT,
            cash TEXT NOT NULL,
            initial_value TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )


def _create_holdings(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS holdings (
            account_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            ticker TEXT NOT NULL,
            exchange TEXT NOT NULL,
            company_name TEXT NOT NULL DEFAULT '',
            shares INTEGER NOT NULL CHECK (shares > 0),
            purchase_price TEXT NOT NULL,
            current_value TEXT,
            PRIMARY KEY(account_id, ticker, exchange)
        )
        """
    )


def _create_transactions(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL,
            type TEXT NOT NULL,
            ticker TEXT NOT NULL,
            exchange TEXT NOT NULL,
            company_name TEXT NOT NULL DEFAULT '',
            shares INTEGER NOT NULL CHECK (shares > 0),
            price TEXT NOT NULL,
            timestamp TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id, timestamp)")


def _create_watchlist(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS watchlist (
            account_id TEXT NOT NULL,
            ticker TEXT NOT NULL,
            exchange TEXT NOT NULL,
            added_at TEXT NOT NULL,
            PRIMARY KEY(account_id, ticker, exchange)
        )
        """
    )


def _create_analysis_history(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS analysis_history (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            company_identifier TEXT NOT NULL,
            comparison_identifier TEXT,
            currency TEXT NOT NULL,
            payload TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_analysis_history_account ON analysis_history(account_id, timestamp DESC)"
    )


def _create_alerts(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS alerts (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL,
            metric_label TEXT NOT NULL,
            condition TEXT NOT NULL CHECK (condition IN ('gt', 'lt')),
            threshold REAL NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_account ON alerts(account_id)")
