"""Entry point: wire storage, market service and web API, then serve."""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from decimal import Decimal

import httpx
import uvicorn

from .cache import InMemoryCache, purge_periodically
from .config import Config
from .db import SqliteAccountStore, migrate_schema
from .domain.levels import LevelClassifier
from .domain.models import Role
from .domain.parsing import to_decimal
from .errors import ValidationError
from .providers.market import OpenAIMarketService
from .services.settings_store import ChartSettingsStore
from .web_api import create_app

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)


async def ensure_admin(store: SqliteAccountStore, config: Config) -> None:
    """Create the configured admin account on first start."""
    if not (config.admin_email and config.admin_password):
        return
    if await store.authenticate(config.admin_email, config.admin_password):
        return
    try:
        await store.create_account(
            full_name="Administrator",
            email=config.admin_email,
            password=config.admin_password,
            role=Role.ADMIN,
        )
        logger.info("Admin account created for %s", config.admin_email)
    except ValidationError:
        logger.warning("Admin email %s already registered with another password", config.admin_email)


def build_app(config: Config):
    """Create all collaborators and the FastAPI app."""
    migrate_schema(config.db_path)

    starting_cash = to_decimal(config.starting_cash)
    if starting_cash is None or starting_cash < 0:
        logger.warning("Invalid STARTING_CASH %r, using 100000", config.starting_cash)
        starting_cash = Decimal("100000")
    store = SqliteAccountStore(config.db_path, starting_cash=starting_cash)

    # Shared HTTP client with connection pooling
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.http_timeout),
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
    )
    semaphore = asyncio.Semaphore(config.max_concurrent_requests)
    market_cache = InMemoryCache(default_ttl=config.market_data_cache_ttl)

    market = None
    if config.openai_api_key:
        market = OpenAIMarketService(
            config=config,
            cache=market_cache,
            http_client=http_client,
            semaphore=semaphore,
        )
    else:
        logger.warning("OPENAI_API_KEY not set: quotes and analyses are disabled")

    @asynccontextmanager
    async def lifespan(app):
        await ensure_admin(store, config)
        purge_task = asyncio.create_task(
            purge_periodically(market_cache, config.cache_cleanup_interval)
        )
        yield
        purge_task.cancel()
        try:
            await purge_task
        except asyncio.CancelledError:
            pass
        await http_client.aclose()
        logger.info("HTTP client closed")

    return create_app(
        config,
        store,
        market=market,
        classifier=LevelClassifier.from_string(config.levels),
        settings_store=ChartSettingsStore(config.settings_path),
        lifespan=lifespan,
    )


def main() -> None:
    config = Config.from_env()
    app = build_app(config)
    logger.info("Starting Welloh API on %s:%d", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_level="info")


if __name__ == "__main__":
    main()
