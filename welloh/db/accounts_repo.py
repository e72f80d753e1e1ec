"""
SQLite implementation of the account store.

Blocking sqlite calls run in the default executor so the async interface
never stalls the event loop.
"""

import asyncio
import functools
import hashlib
import hmac
import json
import logging
import secrets
import sqlite3
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..config import HISTORY_LIMIT
from ..domain import valuation
from ..domain.models import (
    Alert,
    AlertCondition,
    HistoryItem,
    Holding,
    Portfolio,
    Role,
    TradeType,
    Transaction,
    UserAccount,
    WatchItem,
    utc_now,
)
from ..domain.parsing import quantize_money
from ..domain.valuation import TradeResult
from ..errors import StoreError, ValidationError
from .base import AccountStore

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000
UPDATABLE_FIELDS = {"full_name", "portfolio", "transactions", "watchlist"}


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, iterations, salt, expected = stored.split("$")
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), bytes.fromhex(salt), int(iterations)
        )
    except (ValueError, TypeError):
        return False
    return hmac.compare_digest(digest.hex(), expected)


class SqliteAccountStore(AccountStore):
    """Account store backed by a single SQLite file."""

    def __init__(self, db_path: str, starting_cash: Decimal = Decimal("100000")):
        """
        Initialize account store.

        Args:
            db_path: Path to SQLite database (schema must be migrated)
            starting_cash: Cash (and initial value) granted at signup
        """
        self.db_path = db_path
        self.starting_cash = quantize_money(Decimal(starting_cash))

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
        except sqlite3.Error as exc:
            logger.error("Account store failure in %s: %s", fn.__name__, exc)
            raise StoreError("The account service is unavailable. Please try again.") from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    # ==================== Accounts ====================

    async def create_account(
        self,
        full_name: str,
        email: str,
        password: str,
        country: Optional[str] = None,
        institution: Optional[str] = None,
        role: Role = Role.USER,
    ) -> UserAccount:
        account_id = await self._run(
            self._create_account_sync, full_name, email, password, country, institution, role
        )
        return await self.get_account(account_id)

    def _create_account_sync(
        self,
        full_name: str,
        email: str,
        password: str,
        country: Optional[str],
        institution: Optional[str],
        role: Role,
    ) -> str:
        account_id = f"user_{uuid.uuid4().hex}"
        now = utc_now().isoformat()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO accounts (
                        id, email, password_hash, full_name, role, country,
                        institution, cash, initial_value, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        account_id,
                        email.strip(),
                        hash_password(password),
                        full_name.strip(),
                        role.value,
                        country,
                        institution,
                        str(self.starting_cash),
                        str(self.starting_cash),
                        now,
                    ),
                )
                conn.commit()
        except sqlite3.IntegrityError as exc:
            raise ValidationError("An account with this email already exists.") from exc
        logger.info("Created %s account %s", role.value, account_id)
        return account_id

    async def authenticate(self, email: str, password: str) -> Optional[str]:
        return await self._run(self._authenticate_sync, email, password)

    def _authenticate_sync(self, email: str, password: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, password_hash FROM accounts WHERE email = ?",
                (email.strip(),),
            ).fetchone()
        if row and verify_password(password, row["password_hash"]):
            return row["id"]
        return None

    async def get_account(self, account_id: str) -> Optional[UserAccount]:
        return await self._run(self._get_account_sync, account_id)

    def _get_account_sync(self, account_id: str) -> Optional[UserAccount]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
            if not row:
                return None
            return self._load_account(conn, row)

    async def list_accounts(self) -> List[UserAccount]:
        return await self._run(self._list_accounts_sync)

    def _list_accounts_sync(self) -> List[UserAccount]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM accounts ORDER BY created_at ASC, rowid ASC").fetchall()
            return [self._load_account(conn, row) for row in rows]

    def _load_account(self, conn: sqlite3.Connection, row: sqlite3.Row) -> UserAccount:
        account_id = row["id"]
        holdings = self._read_holdings(conn, account_id)
        transactions = [
            Transaction(
                id=t["id"],
                type=TradeType(t["type"]),
                ticker=t["ticker"],
                exchange=t["exchange"],
                company_name=t["company_name"],
                shares=t["shares"],
                price=Decimal(t["price"]),
                timestamp=datetime.fromisoformat(t["timestamp"]),
            )
            for t in conn.execute(
                "SELECT * FROM transactions WHERE account_id = ? ORDER BY timestamp ASC, rowid ASC",
                (account_id,),
            )
        ]
        watchlist = [
            WatchItem(ticker=w["ticker"], exchange=w["exchange"])
            for w in conn.execute(
                "SELECT ticker, exchange FROM watchlist WHERE account_id = ? ORDER BY added_at ASC, rowid ASC",
                (account_id,),
            )
        ]
        history = []
        for h in conn.execute(
            """
            SELECT * FROM analysis_history WHERE account_id = ?
            ORDER BY timestamp DESC, rowid DESC LIMIT ?
            """,
            (account_id, HISTORY_LIMIT),
        ):
            payload = json.loads(h["payload"])
            history.append(
                HistoryItem(
                    id=h["id"],
                    timestamp=datetime.fromisoformat(h["timestamp"]),
                    company_identifier=h["company_identifier"],
                    comparison_identifier=h["comparison_identifier"],
                    currency=h["currency"],
                    analysis=payload.get("analysis", {}),
                    news=payload.get("news", []),
                )
            )
        alerts = [
            Alert(
                id=a["id"],
                metric_label=a["metric_label"],
                condition=AlertCondition(a["condition"]),
                threshold=a["threshold"],
            )
            for a in conn.execute(
                "SELECT * FROM alerts WHERE account_id = ? ORDER BY created_at ASC, rowid ASC",
                (account_id,),
            )
        ]
        return UserAccount(
            id=account_id,
            full_name=row["full_name"],
            email=row["email"],
            role=Role(row["role"]),
            country=row["country"],
            institution=row["institution"],
            portfolio=Portfolio(
                cash=Decimal(row["cash"]),
                initial_value=Decimal(row["initial_value"]),
                holdings=holdings,
            ),
            transactions=transactions,
            watchlist=watchlist,
            analysis_history=history,
            alerts=alerts,
        )

    async def update_account(self, account_id: str, updates: Dict[str, Any]) -> UserAccount:
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported account fields: {', '.join(sorted(unknown))}")
        portfolio = updates.get("portfolio")
        if portfolio is not None and portfolio.cash < 0:
            raise ValidationError("Cash balance cannot be negative.")

        await self._run(self._update_account_sync, account_id, updates)
        account = await self.get_account(account_id)
        if account is None:
            raise StoreError("Account not found.")
        return account

    def _update_account_sync(self, account_id: str, updates: Dict[str, Any]) -> None:
        now = utc_now().isoformat()
        with self._connect() as conn:
            row = conn.execute("SELECT initial_value FROM accounts WHERE id = ?", (account_id,)).fetchone()
            if not row:
                raise StoreError("Account not found.")

            if "full_name" in updates:
                conn.execute(
                    "UPDATE accounts SET full_name = ? WHERE id = ?",
                    (str(updates["full_name"]).strip(), account_id),
                )

            portfolio: Optional[Portfolio] = updates.get("portfolio")
            if portfolio is not None:
                if Decimal(row["initial_value"]) != portfolio.initial_value:
                    logger.warning("Ignoring initial value change for account %s", account_id)
                self._write_portfolio(conn, account_id, portfolio)

            for txn in updates.get("transactions") or []:
                self._insert_transaction(conn, account_id, txn)

            if "watchlist" in updates:
                conn.execute("DELETE FROM watchlist WHERE account_id = ?", (account_id,))
                conn.executemany(
                    "INSERT OR IGNORE INTO watchlist (account_id, ticker, exchange, added_at) VALUES (?, ?, ?, ?)",
                    [(account_id, w.ticker, w.exchange, now) for w in updates["watchlist"]],
                )

            conn.commit()
        logger.debug("Updated account %s: %s", account_id, ", ".join(sorted(updates)))

    # ==================== Trades ====================

    async def apply_trade(
        self,
        account_id: str,
        side: TradeType,
        ticker: str,
        exchange: str,
        shares: Any,
        price: Any,
        company_name: str = "",
    ) -> TradeResult:
        return await self._run(
            self._apply_trade_sync, account_id, TradeType(side), ticker, exchange, shares, price, company_name
        )

    def _apply_trade_sync(
        self,
        account_id: str,
        side: TradeType,
        ticker: str,
        exchange: str,
        shares: Any,
        price: Any,
        company_name: str,
    ) -> TradeResult:
        execute = valuation.buy if side == TradeType.BUY else valuation.sell
        conn = self._connect()
        try:
            # BEGIN IMMEDIATE takes the write lock before the read, so a
            # concurrent trade waits and then sees this one's result.
            with conn:
                conn.execute("BEGIN IMMEDIATE")
                portfolio = self._read_portfolio(conn, account_id)
                if portfolio is None:
                    raise StoreError("Account not found.")
                result = execute(portfolio, ticker, exchange, shares, price, company_name=company_name)
                self._write_portfolio(conn, account_id, result.portfolio)
                self._insert_transaction(conn, account_id, result.transaction)
        finally:
            conn.close()
        return result

    def _read_portfolio(self, conn: sqlite3.Connection, account_id: str) -> Optional[Portfolio]:
        row = conn.execute(
            "SELECT cash, initial_value FROM accounts WHERE id = ?", (account_id,)
        ).fetchone()
        if not row:
            return None
        return Portfolio(
            cash=Decimal(row["cash"]),
            initial_value=Decimal(row["initial_value"]),
            holdings=self._read_holdings(conn, account_id),
        )

    def _read_holdings(self, conn: sqlite3.Connection, account_id: str) -> List[Holding]:
        return [
            Holding(
                ticker=h["ticker"],
                exchange=h["exchange"],
                company_name=h["company_name"],
                shares=h["shares"],
                purchase_price=Decimal(h["purchase_price"]),
                current_value=Decimal(h["current_value"]) if h["current_value"] is not None else None,
            )
            for h in conn.execute(
                "SELECT * FROM holdings WHERE account_id = ? ORDER BY position ASC",
                (account_id,),
            )
        ]

    def _write_portfolio(self, conn: sqlite3.Connection, account_id: str, portfolio: Portfolio) -> None:
        """Store cash and holdings. The initial value column is never written."""
        conn.execute(
            "UPDATE accounts SET cash = ? WHERE id = ?",
            (str(portfolio.cash), account_id),
        )
        conn.execute("DELETE FROM holdings WHERE account_id = ?", (account_id,))
        conn.executemany(
            """
            INSERT INTO holdings (
                account_id, position, ticker, exchange, company_name,
                shares, purchase_price, current_value
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    account_id,
                    position,
                    h.ticker,
                    h.exchange,
                    h.company_name,
                    h.shares,
                    str(h.purchase_price),
                    str(h.current_value) if h.current_value is not None else None,
                )
                for position, h in enumerate(portfolio.holdings)
            ],
        )

    def _insert_transaction(self, conn: sqlite3.Connection, account_id: str, txn: Transaction) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO transactions (
                id, account_id, type, ticker, exchange, company_name,
                shares, price, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                txn.id,
                account_id,
                txn.type.value,
                txn.ticker,
                txn.exchange,
                txn.company_name,
                txn.shares,
                str(txn.price),
                txn.timestamp.isoformat(),
            ),
        )

    # ==================== Analysis history ====================

    async def append_history(self, account_id: str, item: HistoryItem) -> HistoryItem:
        await self._run(self._append_history_sync, account_id, item)
        return item

    def _append_history_sync(self, account_id: str, item: HistoryItem) -> None:
        payload = json.dumps({"analysis": item.analysis, "news": item.news}, ensure_ascii=False)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO analysis_history (
                    id, account_id, timestamp, company_identifier,
                    comparison_identifier, currency, payload
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    account_id,
                    item.timestamp.isoformat(),
                    item.company_identifier,
                    item.comparison_identifier,
                    item.currency,
                    payload,
                ),
            )
            # Keep only the newest entries
            conn.execute(
                """
                DELETE FROM analysis_history
                WHERE account_id = ? AND id NOT IN (
                    SELECT id FROM analysis_history WHERE account_id = ?
                    ORDER BY timestamp DESC, rowid DESC LIMIT ?
                )
                """,
                (account_id, account_id, HISTORY_LIMIT),
            )
            conn.commit()

    async def clear_history(self, account_id: str) -> bool:
        return await self._run(self._clear_history_sync, account_id)

    def _clear_history_sync(self, account_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM analysis_history WHERE account_id = ?", (account_id,))
            conn.commit()
        return cursor.rowcount > 0

    # ==================== Alerts ====================

    async def add_alert(
        self, account_id: str, metric_label: str, condition: AlertCondition, threshold: float
    ) -> Alert:
        alert = Alert(
            id=f"alert_{uuid.uuid4().hex}",
            metric_label=metric_label,
            condition=AlertCondition(condition),
            threshold=float(threshold),
        )
        await self._run(self._add_alert_sync, account_id, alert)
        return alert

    def _add_alert_sync(self, account_id: str, alert: Alert) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO alerts (id, account_id, metric_label, condition, threshold, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    alert.id,
                    account_id,
                    alert.metric_label,
                    alert.condition.value,
                    alert.threshold,
                    utc_now().isoformat(),
                ),
            )
            conn.commit()

    async def remove_alert(self, alert_id: str) -> bool:
        return await self._run(self._remove_alert_sync, alert_id)

    def _remove_alert_sync(self, alert_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM alerts WHERE id = ?", (alert_id,))
            conn.commit()
        return cursor.rowcount > 0
