"""
Per-user session: current account, navigation state and mutations.

A ``SessionController`` holds a cached copy of one account. Every mutation
goes through the account store and is followed by ``refresh()``; when the
store fails the cached copy is left as it was.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..db.base import AccountStore
from ..domain import valuation
from ..domain.alerts import TriggeredAlert, evaluate
from ..domain.levels import LevelClassifier, PromotionEvent, Tier
from ..domain.models import AlertCondition, HistoryItem, Role, TradeType, UserAccount, WatchItem, utc_now
from ..domain.navigation import Navigator, SessionCheckStarted, SignedIn, SignedOut
from ..domain.parsing import is_valid_ticker, normalize_ticker, parse_share_count
from ..domain.valuation import PriceLookup, RevaluedPortfolio
from ..errors import AccessDenied, AuthenticationRequired, StoreError, ValidationError, WellohError
from ..providers.market import MarketService

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class SessionStatus(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    READY = "ready"
    FAILED = "failed"


@dataclass
class PortfolioSnapshot:
    """Result of a revaluation as shown on the dashboard."""
    valuation: RevaluedPortfolio
    level: Tier
    promotion: Optional[PromotionEvent] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.valuation.to_dict()
        data["level"] = self.level.to_dict()
        data["promotion"] = self.promotion.to_dict() if self.promotion else None
        return data


def new_history_item(
    company_identifier: str,
    currency: str,
    analysis: Dict[str, Any],
    news: Optional[List[Dict[str, Any]]] = None,
    comparison_identifier: Optional[str] = None,
) -> HistoryItem:
    return HistoryItem(
        id=f"hist_{uuid.uuid4().hex}",
        timestamp=utc_now(),
        company_identifier=company_identifier,
        comparison_identifier=comparison_identifier,
        currency=currency,
        analysis=analysis,
        news=list(news or []),
    )


def _metrics_of(analysis: Any) -> Iterable[Any]:
    if analysis is None:
        return []
    if isinstance(analysis, dict):
        return analysis.get("keyMetrics") or analysis.get("key_metrics") or []
    return getattr(analysis, "key_metrics", None) or []


class SessionController:
    """
    Explicit session object for one signed-in (or signed-out) visitor.

    Attributes:
        account: cached account, None while signed out
        status: idle | refreshing | ready | failed
        navigator: routing state kept in sync with sign-in / sign-out
    """

    def __init__(
        self,
        store: AccountStore,
        market: Optional[MarketService] = None,
        classifier: Optional[LevelClassifier] = None,
        navigator: Optional[Navigator] = None,
    ):
        self.store = store
        self.market = market
        self.classifier = classifier or LevelClassifier()
        self.navigator = navigator or Navigator()
        self.status = SessionStatus.IDLE
        self.account: Optional[UserAccount] = None
        self.user_id: Optional[str] = None
        self.last_error: Optional[WellohError] = None
        self.last_valuation: Optional[RevaluedPortfolio] = None
        self._last_total: Optional[Decimal] = None

    @property
    def is_authenticated(self) -> bool:
        return self.account is not None

    def _require_account(self) -> UserAccount:
        if self.account is None:
            raise AuthenticationRequired("Please sign in to continue.")
        return self.account

    def _sign_in(self, account: UserAccount) -> UserAccount:
        if self.user_id != account.id:
            self._last_total = None
            self.last_valuation = None
        self.account = account
        self.user_id = account.id
        self.status = SessionStatus.READY
        self.last_error = None
        self.navigator.dispatch(SignedIn(account.role))
        return account

    def _sign_out(self) -> None:
        self.account = None
        self.user_id = None
        self._last_total = None
        self.last_valuation = None
        self.navigator.dispatch(SignedOut())

    def _fail(self, exc: WellohError) -> None:
        self.status = SessionStatus.FAILED
        self.last_error = exc

    # ==================== Authentication ====================

    async def bootstrap(self, user_id: Optional[str]) -> Optional[UserAccount]:
        """
        Resolve the session for an identity (or None when nobody is signed in).

        If the store has no account for the identity the session stays
        signed out.
        """
        self.navigator.dispatch(SessionCheckStarted())
        if not user_id:
            self._sign_out()
            self.status = SessionStatus.IDLE
            return None

        self.status = SessionStatus.REFRESHING
        try:
            account = await self.store.get_account(user_id)
        except StoreError as exc:
            logger.error("Session bootstrap failed for %s: %s", user_id, exc)
            self._sign_out()
            self._fail(exc)
            raise

        if account is None:
            logger.warning("No account for authenticated identity %s", user_id)
            self._sign_out()
            self.status = SessionStatus.IDLE
            return None
        return self._sign_in(account)

    async def login(self, email: str, password: str) -> UserAccount:
        user_id = await self.store.authenticate((email or "").strip(), password or "")
        if user_id is None:
            raise AuthenticationRequired("Invalid email or password.")
        account = await self.bootstrap(user_id)
        if account is None:
            raise AuthenticationRequired("Invalid email or password.")
        logger.info("User %s signed in", user_id)
        return account

    async def signup(
        self,
        full_name: str,
        email: str,
        password: str,
        country: Optional[str] = None,
        institution: Optional[str] = None,
    ) -> UserAccount:
        full_name = (full_name or "").strip()
        email = (email or "").strip()
        if not full_name:
            raise ValidationError("Please enter your full name.")
        if "@" not in email:
            raise ValidationError("Please enter a valid email address.")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

        self.navigator.dispatch(SessionCheckStarted())
        try:
            account = await self.store.create_account(
                full_name=full_name,
                email=email,
                password=password,
                country=(country or "").strip() or None,
                institution=(institution or "").strip() or None,
            )
        except WellohError:
            self._sign_out()
            raise
        logger.info("User %s signed up", account.id)
        return self._sign_in(account)

    def logout(self) -> None:
        if self.user_id:
            logger.info("User %s signed out", self.user_id)
        self._sign_out()
        self.status = SessionStatus.IDLE
        self.last_error = None

    # ==================== Account sync ====================

    async def refresh(self) -> Optional[UserAccount]:
        """Re-fetch the cached account from the store."""
        if not self.user_id:
            raise AuthenticationRequired("Please sign in to continue.")

        self.status = SessionStatus.REFRESHING
        try:
            account = await self.store.get_account(self.user_id)
        except StoreError as exc:
            logger.error("Refresh failed for %s: %s", self.user_id, exc)
            self._fail(exc)
            raise

        if account is None:
            logger.warning("Account %s disappeared, signing out", self.user_id)
            self._sign_out()
            self.status = SessionStatus.IDLE
            return None
        return self._sign_in(account)

    async def _mutate(self, updates: Dict[str, Any]) -> UserAccount:
        account = self._require_account()
        try:
            await self.store.update_account(account.id, updates)
        except StoreError as exc:
            self._fail(exc)
            raise
        return await self.refresh()

    async def update_account(self, updates: Dict[str, Any]) -> UserAccount:
        return await self._mutate(updates)

    # ==================== Trading ====================

    async def _resolve_price(self, ticker: str, price: Any) -> Any:
        if price is not None:
            return price
        if self.market is None:
            raise ValidationError("A price is required when no market service is available.")
        return await self.market.get_price(ticker)

    async def _trade(self, side: TradeType, ticker: str, exchange: str, shares: Any, price: Any, company_name: str):
        account = self._require_account()
        ticker = normalize_ticker(ticker or "")
        if not is_valid_ticker(ticker):
            raise ValidationError("Please enter a valid ticker.")
        exchange = (exchange or "").strip().upper()
        shares = parse_share_count(shares)
        price = await self._resolve_price(ticker, price)

        # Funds and shares are checked by the store against its current
        # portfolio, not against the cached copy.
        try:
            result = await self.store.apply_trade(
                account.id, side, ticker, exchange, shares, price, company_name=company_name
            )
        except StoreError as exc:
            self._fail(exc)
            raise
        await self.refresh()
        return result.transaction

    async def buy(self, ticker: str, exchange: str, shares: Any, price: Any = None, company_name: str = ""):
        """Buy at ``price``, or at the current quote when no price is given."""
        return await self._trade(TradeType.BUY, ticker, exchange, shares, price, company_name)

    async def sell(self, ticker: str, exchange: str, shares: Any, price: Any = None, company_name: str = ""):
        return await self._trade(TradeType.SELL, ticker, exchange, shares, price, company_name)

    async def toggle_watchlist(self, ticker: str, exchange: str) -> bool:
        """Add or remove (ticker, exchange). Returns True when now watched."""
        account = self._require_account()
        item = WatchItem(normalize_ticker(ticker or ""), (exchange or "").strip().upper())
        if not is_valid_ticker(item.ticker):
            raise ValidationError("Please enter a valid ticker.")

        if account.is_watching(item.ticker, item.exchange):
            watchlist = [w for w in account.watchlist if w != item]
        else:
            watchlist = account.watchlist + [item]
        await self._mutate({"watchlist": watchlist})
        return item in watchlist

    # ==================== Analysis history ====================

    async def add_history_item(self, item: HistoryItem) -> HistoryItem:
        account = self._require_account()
        try:
            await self.store.append_history(account.id, item)
        except StoreError as exc:
            self._fail(exc)
            raise
        await self.refresh()
        return item

    async def clear_history(self) -> None:
        account = self._require_account()
        try:
            await self.store.clear_history(account.id)
        except StoreError as exc:
            self._fail(exc)
            raise
        await self.refresh()

    # ==================== Alerts ====================

    async def add_alert(self, metric_label: str, condition: Any, threshold: Any):
        account = self._require_account()
        metric_label = (metric_label or "").strip()
        if not metric_label:
            raise ValidationError("Please choose a metric.")
        try:
            condition = AlertCondition(condition)
        except ValueError as exc:
            raise ValidationError("Condition must be 'gt' or 'lt'.") from exc
        try:
            threshold = float(threshold)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Please enter a numeric threshold.") from exc
        if not math.isfinite(threshold):
            raise ValidationError("Please enter a numeric threshold.")

        try:
            alert = await self.store.add_alert(account.id, metric_label, condition, threshold)
        except StoreError as exc:
            self._fail(exc)
            raise
        await self.refresh()
        return alert

    async def remove_alert(self, alert_id: str) -> bool:
        account = self._require_account()
        if not any(a.id == alert_id for a in account.alerts):
            return False
        try:
            removed = await self.store.remove_alert(alert_id)
        except StoreError as exc:
            self._fail(exc)
            raise
        await self.refresh()
        return removed

    async def check_alerts(self, analysis: Any) -> List[TriggeredAlert]:
        """
        Evaluate active alerts against an analysis and delete the ones that fired.

        ``analysis`` is an ``AnalysisData`` or its camelCase dict form.
        """
        account = self._require_account()
        result = evaluate(account.alerts, _metrics_of(analysis))
        if not result.triggered:
            return []
        removed = 0
        try:
            for triggered in result.triggered:
                await self.store.remove_alert(triggered.alert.id)
                removed += 1
        except StoreError as exc:
            self._fail(exc)
            if removed:
                # Some deletes landed: resync so the cache shows them.
                await self._resync_after_failure()
            raise
        await self.refresh()
        return result.triggered

    async def _resync_after_failure(self) -> None:
        """Best-effort refresh after a partially applied mutation; keeps the original failure."""
        error = self.last_error
        try:
            await self.refresh()
        except StoreError as exc:
            logger.warning("Resync after partial failure also failed: %s", exc)
        self._fail(error)

    # ==================== Valuation ====================

    async def revalue_portfolio(self, price_lookup: Optional[PriceLookup] = None) -> PortfolioSnapshot:
        """
        Revalue holdings against fresh prices and detect a tier promotion.

        The promotion baseline is the previous revaluation of this session;
        the first one compares against the cost-basis value.
        """
        account = self._require_account()
        if price_lookup is None and self.market is not None:
            price_lookup = self.market.get_price

        revalued = await valuation.revalue(account.portfolio, price_lookup)
        previous = self._last_total
        if previous is None:
            previous = account.portfolio.cost_basis_value()
        promotion = self.classifier.detect_promotion(previous, revalued.total_value)
        if promotion:
            logger.info(
                "User %s promoted %s -> %s",
                account.id, promotion.old_tier.name, promotion.new_tier.name,
            )

        self._last_total = revalued.total_value
        self.last_valuation = revalued
        return PortfolioSnapshot(
            valuation=revalued,
            level=self.classifier.classify(revalued.total_value),
            promotion=promotion,
        )

    # ==================== Directory ====================

    async def get_all_accounts(self) -> List[UserAccount]:
        self._require_account()
        return await self.store.list_accounts()

    async def get_account_by_id(self, account_id: str) -> Optional[UserAccount]:
        self._require_account()
        return await self.store.get_account(account_id)

    def require_admin(self) -> UserAccount:
        account = self._require_account()
        if account.role != Role.ADMIN:
            raise AccessDenied("Access denied: administrators only.")
        return account
