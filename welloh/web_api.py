"""Web API - FastAPI application exposing sessions, trading and analysis."""

import logging
import secrets
import time
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from .config import Config
from .db.base import AccountStore
from .domain.levels import LevelClassifier
from .domain.valuation import revalue
from .errors import (
    AccessDenied,
    AuthenticationRequired,
    InsufficientFunds,
    InsufficientShares,
    LookupFailure,
    RateLimited,
    StoreError,
    ValidationError,
    WellohError,
)
from .providers.market import MarketService
from .services.leaderboard_service import LeaderboardService
from .services.session import SessionController, new_history_item
from .services.settings_store import ChartSettingsStore

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 422,
    InsufficientFunds: 409,
    InsufficientShares: 409,
    AuthenticationRequired: 401,
    AccessDenied: 403,
    RateLimited: 429,
    LookupFailure: 502,
    StoreError: 503,
}


def status_for(exc: WellohError) -> int:
    # Most specific class first (RateLimited before LookupFailure)
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


# ============== PYDANTIC MODELS ==============

class SignupRequest(BaseModel):
    full_name: str
    email: str
    password: str
    country: Optional[str] = None
    institution: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class NavigateRequest(BaseModel):
    fragment: str = ""


class TradeRequest(BaseModel):
    side: str = Field(pattern="^(buy|sell)$")
    ticker: str
    exchange: str = ""
    shares: Any  # validated by the domain so "abc" gets the same message as in the UI
    price: Optional[Any] = None
    company_name: str = ""


class WatchlistRequest(BaseModel):
    ticker: str
    exchange: str = ""


class AnalysisRequest(BaseModel):
    identifier: str
    currency: str = "USD"
    comparison_identifier: Optional[str] = None


class AlertRequest(BaseModel):
    metric_label: str
    condition: str
    threshold: Any


class TopicRequest(BaseModel):
    topic: str


class StrategyRequest(BaseModel):
    prompt: str


# ============== SESSIONS ==============

class SessionRegistry:
    """
    Bearer token -> SessionController.

    Tokens expire after ``ttl_seconds`` without use; expired entries are
    dropped on lookup and swept on every registration.
    """

    def __init__(self, factory, ttl_seconds: float = 3600, clock=time.monotonic):
        self._factory = factory
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._sessions: Dict[str, Tuple[SessionController, float]] = {}

    def new(self) -> SessionController:
        return self._factory()

    def register(self, session: SessionController) -> str:
        self.sweep()
        token = secrets.token_urlsafe(32)
        self._sessions[token] = (session, self.clock())
        return token

    def get(self, token: Optional[str]) -> Optional[SessionController]:
        if not token or token not in self._sessions:
            return None
        session, last_seen = self._sessions[token]
        now = self.clock()
        if now - last_seen > self.ttl_seconds:
            del self._sessions[token]
            logger.info("Session token expired after %.0f idle seconds", now - last_seen)
            return None
        self._sessions[token] = (session, now)
        return session

    def drop(self, token: Optional[str]) -> None:
        if token:
            self._sessions.pop(token, None)

    def sweep(self) -> int:
        """Remove expired sessions, return how many were removed."""
        now = self.clock()
        expired = [t for t, (_, seen) in self._sessions.items() if now - seen > self.ttl_seconds]
        for token in expired:
            del self._sessions[token]
        if expired:
            logger.debug("Swept %d expired sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _session_payload(session: SessionController) -> Dict[str, Any]:
    return {
        "status": session.status.value,
        "authenticated": session.is_authenticated,
        "fragment": session.navigator.fragment,
        "view": session.navigator.view.to_dict(),
        "account": session.account.to_dict() if session.account else None,
        "error": session.last_error.message if session.last_error else None,
    }


async def _primed_stream(chunks: AsyncIterator[str]) -> StreamingResponse:
    """Pull the first chunk before responding so early failures map to an error status."""
    iterator = chunks.__aiter__()
    try:
        first = await iterator.__anext__()
    except StopAsyncIteration:
        first = ""

    async def body():
        if first:
            yield first
        async for chunk in iterator:
            yield chunk

    return StreamingResponse(body(), media_type="text/markdown; charset=utf-8")


# ============== FASTAPI APP ==============

def create_app(
    config: Config,
    store: AccountStore,
    market: Optional[MarketService] = None,
    classifier: Optional[LevelClassifier] = None,
    settings_store: Optional[ChartSettingsStore] = None,
    lifespan=None,
) -> FastAPI:
    """
    Build the web API around the given collaborators.

    ``market`` may be None: endpoints needing prices or analyses then fail
    with a lookup error, and valuation falls back to purchase prices.
    """
    classifier = classifier or LevelClassifier.from_string(config.levels)
    settings_store = settings_store or ChartSettingsStore(config.settings_path)
    price_lookup = market.get_price if market is not None else None
    registry = SessionRegistry(
        lambda: SessionController(store, market, classifier),
        ttl_seconds=config.session_ttl,
    )
    leaderboard = LeaderboardService(store, price_lookup, classifier)

    app = FastAPI(title="Welloh Web API", lifespan=lifespan)
    app.state.sessions = registry

    @app.exception_handler(WellohError)
    async def welloh_error_handler(request: Request, exc: WellohError):
        code = status_for(exc)
        if code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=code, content={"error": exc.kind, "message": exc.message})

    def require_api_auth(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> None:
        """Enforce API key auth when WEB_API_TOKEN is configured."""
        if not config.web_api_token:
            return
        if not x_api_key or x_api_key != config.web_api_token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    def optional_session(authorization: Optional[str] = Header(default=None)) -> Optional[SessionController]:
        return registry.get(_bearer_token(authorization))

    def current_session(session: Optional[SessionController] = Depends(optional_session)) -> SessionController:
        if session is None or not session.is_authenticated:
            raise AuthenticationRequired("Please sign in to continue.")
        return session

    def require_market() -> MarketService:
        if market is None:
            raise LookupFailure("The market service is not configured.")
        return market

    api = APIRouter(prefix="/api", dependencies=[Depends(require_api_auth)])

    @app.get("/healthz")
    async def healthz():
        """Unauthenticated health probe endpoint for external pingers."""
        return {"status": "ok", "sessions": len(registry)}

    # ---------- auth / session ----------

    @api.post("/auth/signup", status_code=status.HTTP_201_CREATED)
    async def signup(body: SignupRequest):
        session = registry.new()
        await session.signup(body.full_name, body.email, body.password, body.country, body.institution)
        token = registry.register(session)
        return {"token": token, "session": _session_payload(session)}

    @api.post("/auth/login")
    async def login(body: LoginRequest):
        session = registry.new()
        await session.login(body.email, body.password)
        token = registry.register(session)
        return {"token": token, "session": _session_payload(session)}

    @api.post("/auth/logout")
    async def logout(authorization: Optional[str] = Header(default=None)):
        token = _bearer_token(authorization)
        session = registry.get(token)
        if session is not None:
            session.logout()
        registry.drop(token)
        return {"status": "signed_out"}

    @api.get("/session")
    async def get_session(session: Optional[SessionController] = Depends(optional_session)):
        if session is None:
            session = registry.new()
            await session.bootstrap(None)
        elif session.is_authenticated:
            await session.refresh()
        return _session_payload(session)

    @api.post("/navigate")
    async def navigate(body: NavigateRequest, session: Optional[SessionController] = Depends(optional_session)):
        if session is None:
            session = registry.new()
            await session.bootstrap(None)
        session.navigator.navigate(body.fragment)
        return {"fragment": session.navigator.fragment, "view": session.navigator.view.to_dict()}

    # ---------- portfolio ----------

    @api.get("/portfolio")
    async def portfolio(session: SessionController = Depends(current_session)):
        snapshot = await session.revalue_portfolio()
        return snapshot.to_dict()

    @api.post("/trades", status_code=status.HTTP_201_CREATED)
    async def trade(body: TradeRequest, session: SessionController = Depends(current_session)):
        execute = session.buy if body.side == "buy" else session.sell
        transaction = await execute(body.ticker, body.exchange, body.shares, body.price, body.company_name)
        return {
            "transaction": transaction.to_dict(),
            "portfolio": session.account.portfolio.to_dict(),
        }

    @api.get("/transactions")
    async def transactions(session: SessionController = Depends(current_session)):
        return [t.to_dict() for t in session.account.transactions]

    @api.get("/watchlist")
    async def watchlist(session: SessionController = Depends(current_session)):
        return [w.to_dict() for w in session.account.watchlist]

    @api.post("/watchlist/toggle")
    async def toggle_watchlist(body: WatchlistRequest, session: SessionController = Depends(current_session)):
        watching = await session.toggle_watchlist(body.ticker, body.exchange)
        return {"watching": watching, "watchlist": [w.to_dict() for w in session.account.watchlist]}

    # ---------- market data ----------

    @api.get("/quotes/{ticker}")
    async def quote(ticker: str, _: SessionController = Depends(current_session)):
        data = await require_market().get_quote(ticker)
        return data.model_dump(by_alias=True)

    @api.get("/quotes/{ticker}/history")
    async def quote_history(ticker: str, _: SessionController = Depends(current_session)):
        points = await require_market().get_history(ticker)
        return [p.model_dump(by_alias=True) for p in points]

    @api.get("/search")
    async def search(q: str = "", _: SessionController = Depends(current_session)):
        results = await require_market().search_symbols(q)
        return [r.model_dump(by_alias=True) for r in results]

    @api.get("/market/overview")
    async def market_overview(_: SessionController = Depends(current_session)):
        indices = await require_market().get_market_overview()
        return [i.model_dump(by_alias=True) for i in indices]

    @api.get("/tenders")
    async def tenders(q: str = "", _: SessionController = Depends(current_session)):
        results = await require_market().search_public_tenders(q)
        return [t.model_dump(by_alias=True) for t in results]

    # ---------- analysis, history, alerts ----------

    @api.post("/analysis")
    async def analysis(body: AnalysisRequest, session: SessionController = Depends(current_session)):
        service = require_market()
        comparison_id = (body.comparison_identifier or "").strip() or None
        if comparison_id:
            result = await service.get_comparison(body.identifier, comparison_id, body.currency)
            main, comparison = result["main"], result["comparison"]
        else:
            main, comparison = await service.get_analysis(body.identifier, body.currency), None

        payload = {
            "main": main.analysis.model_dump(by_alias=True),
            "comparison": comparison.analysis.model_dump(by_alias=True) if comparison else None,
        }
        news = [n.model_dump(by_alias=True) for n in main.news]
        item = new_history_item(
            company_identifier=body.identifier.strip(),
            currency=body.currency.strip().upper(),
            analysis=payload,
            news=news,
            comparison_identifier=comparison_id,
        )
        await session.add_history_item(item)
        triggered = await session.check_alerts(main.analysis)
        return {
            "history_id": item.id,
            "analysis": payload,
            "news": news,
            "triggered_alerts": [t.to_dict() for t in triggered],
        }

    @api.get("/history")
    async def history(session: SessionController = Depends(current_session)):
        return [h.to_dict() for h in session.account.analysis_history]

    @api.delete("/history")
    async def clear_history(session: SessionController = Depends(current_session)):
        await session.clear_history()
        return {"status": "cleared"}

    @api.get("/alerts")
    async def alerts(session: SessionController = Depends(current_session)):
        return [a.to_dict() for a in session.account.alerts]

    @api.post("/alerts", status_code=status.HTTP_201_CREATED)
    async def add_alert(body: AlertRequest, session: SessionController = Depends(current_session)):
        alert = await session.add_alert(body.metric_label, body.condition, body.threshold)
        return alert.to_dict()

    @api.delete("/alerts/{alert_id}")
    async def remove_alert(alert_id: str, session: SessionController = Depends(current_session)):
        if not await session.remove_alert(alert_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
        return {"status": "removed"}

    # ---------- leaderboard, admin, profiles ----------

    @api.get("/leaderboard")
    async def get_leaderboard(_: SessionController = Depends(current_session)):
        rows = await leaderboard.leaderboard()
        return [r.to_dict() for r in rows]

    @api.get("/admin/overview")
    async def admin_overview(
        sort_by: str = "rank",
        descending: bool = False,
        session: SessionController = Depends(current_session),
    ):
        session.require_admin()
        rows = await leaderboard.admin_overview(sort_by, descending)
        return [r.to_dict(include_email=True) for r in rows]

    @api.get("/profile/{account_id}")
    async def profile(account_id: str, session: SessionController = Depends(current_session)):
        account = await session.get_account_by_id(account_id)
        if account is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
        revalued = await revalue(account.portfolio, price_lookup)
        data = account.public_profile()
        data["valuation"] = revalued.to_dict()
        data["level"] = classifier.classify(revalued.total_value).to_dict()
        return data

    # ---------- streams ----------

    @api.post("/education/stream")
    async def education_stream(body: TopicRequest, _: SessionController = Depends(current_session)):
        return await _primed_stream(require_market().stream_text(body.topic))

    @api.post("/strategy/stream")
    async def strategy_stream(body: StrategyRequest, _: SessionController = Depends(current_session)):
        return await _primed_stream(require_market().stream_strategy(body.prompt))

    # ---------- settings ----------

    @api.get("/settings/chart")
    async def get_chart_settings():
        return settings_store.load().to_dict()

    @api.put("/settings/chart")
    async def put_chart_settings(changes: Dict[str, Any]):
        return settings_store.update(changes).to_dict()

    app.include_router(api)
    return app
