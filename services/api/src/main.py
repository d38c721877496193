from contextlib import asynccontextmanager
from pathlib import Path

import conf
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from broadcast import AuctionBroadcaster
from models.operations.auctions import AuctionEngine
from models.stores.base import AuctionStore
from routes.base import router
from routes.errors import register_error_handlers
from utils import log

log.init(conf.get_log_level(), conf.get_environment())
logger = log.get_logger(__name__)

if not conf.validate():
    raise ValueError("Invalid configuration.")


async def _open_store() -> AuctionStore:
    backend = conf.get_store_backend()
    if backend == "couchbase":
        from clients.couchbase import check_connection
        from models.stores.couchbase import CouchbaseAuctionStore

        logger.info("Verifying Couchbase connection...")
        await check_connection()
        logger.info("Couchbase connection verified.")
        store = CouchbaseAuctionStore()
        await store.ensure_collections()
        return store

    from models.stores.memory import MemoryAuctionStore

    logger.warning("Using the in-memory auction store; state is lost on restart")
    return MemoryAuctionStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = await _open_store()
    broadcaster = AuctionBroadcaster()
    app.state.broadcaster = broadcaster
    app.state.engine = AuctionEngine(
        store, notifier=broadcaster, settings=conf.get_engine_settings()
    )

    from scheduler import init_scheduler, shutdown_scheduler

    scheduler_conf = conf.get_scheduler_conf()
    if scheduler_conf.enabled:
        init_scheduler(app.state.engine, scheduler_conf.interval_seconds)
    else:
        logger.warning("Auction sweep disabled (AUCTION_TICK_ENABLED=false)")

    yield

    shutdown_scheduler()
    await store.close()


app = FastAPI(
    title="Auction Engine API",
    version="0.1.0",
    docs_url="/docs",
    lifespan=lifespan,
    debug=conf.get_http_expose_errors(),
)

app.include_router(router)
register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

http_conf = conf.get_http_conf()
logger.info(f"Starting API on port {http_conf.port}")

logger.info("--- Registered Routes ---")
for route in app.routes:
    methods_set = getattr(route, "methods", None)
    methods = ", ".join(sorted(methods_set)) if methods_set else "Any"
    path = getattr(route, "path", "<unknown>")
    logger.info(f"{path} [{methods}]")
logger.info("-------------------------")

if __name__ == "__main__":
    src_dir = Path(__file__).parent
    repo_root = src_dir.parents[2]
    uvicorn.run(
        "main:app",
        host=http_conf.host,
        port=http_conf.port,
        reload=http_conf.autoreload,
        log_level="info",
        reload_dirs=[str(src_dir), str(repo_root / "models"), str(repo_root / "clients")],
        log_config=None,
    )
