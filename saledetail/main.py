import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, status
from saledetail.core.db import init_db, close_db
from saledetail.api.v1.sale_details import router as sale_details_router
from saledetail.api.v1.outbox import router as outbox_router
from saledetail.consumers.outbox_dispatcher import OutboxDispatcher
from saledetail.consumers.saga_consumer import SagaConsumer
from saledetail.events.publisher import RabbitEventPublisher
from saledetail.core.config import LOG_FORMAT, LOG_LEVEL, PROJECT_NAME, RUN_WORKERS, VERSION
from saledetail.core.exception_handlers import setup_exception_handlers

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
log = logging.getLogger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db() # Connect to DB and generate schemas

    publisher = dispatcher = consumer = None
    if RUN_WORKERS:
        # Broker errors propagate: the service does not start half-wired
        publisher = RabbitEventPublisher()
        await publisher.connect()
        dispatcher = OutboxDispatcher(publisher)
        dispatcher.start()
        consumer = SagaConsumer()
        await consumer.start()

    yield

    if consumer:
        await consumer.stop()
    if dispatcher:
        await dispatcher.stop()
    if publisher:
        await publisher.close()
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    # Configure API documentation and paths
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers for modular API structure
app.include_router(sale_details_router, prefix="/api/v1/sale-details", tags=["Sale Details"])
app.include_router(outbox_router, prefix="/api/v1/outbox", tags=["Outbox Operations"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}
