import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from donation_relay.batch.routes import router as batch_router
from donation_relay.batch.service import RelayService
from donation_relay.batch.worker import BatchWorker
from donation_relay.core.config import Settings
from donation_relay.core.database import create_db_engine
from donation_relay.core.logging import configure_logging
from donation_relay.donations.routes import router as donations_router
from donation_relay.donations.store import DonationQueueStore
from donation_relay.relay.client import HttpRelayClient

logger = logging.getLogger(__name__)


def build_service(settings: Settings, relay=None, **kwargs) -> RelayService:
    # tables are created here, once, when the store comes up
    store = DonationQueueStore(create_db_engine(settings.database_url))
    if relay is None and settings.relay_url:
        relay = HttpRelayClient(settings.relay_url, api_key=settings.api_key)
    return RelayService(store, relay, settings, **kwargs)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = app.state.service

    # anything a crash left half-done is failed, never silently retried
    recovered = service.store.recover_interrupted()
    if recovered:
        logger.warning("recovered %d interrupted donations", recovered)

    worker = None
    if service.configured and service.settings.scheduler_interval > 0:
        worker = BatchWorker(service, service.settings.scheduler_interval)
        worker.start()
    elif not service.configured:
        logger.warning("no relay gateway configured, batches will not run")

    yield

    if worker is not None:
        await worker.stop()
    await service.aclose()


def create_app(settings: Settings = None, relay=None, **service_kwargs) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title="donation-relay", version="1.0.0", lifespan=lifespan)
    # the service is the only owner of queue state, handlers reach it through app.state
    app.state.service = build_service(settings, relay=relay, **service_kwargs)

    # queue endpoints and batch endpoints live in their own modules
    app.include_router(donations_router)
    app.include_router(batch_router)

    # the wallet frontend runs on another origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root():
        return {"message": "donation relay is running"}

    return app


def run():
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run("donation_relay.main:create_app", factory=True, host=settings.host, port=settings.port)
