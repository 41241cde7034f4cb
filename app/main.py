# app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.errors import StoreError
from app.logging_config import configure_logging
from app.routers import batches as batches_router
from app.services.batch_store import BatchStore, get_batch_store
from app.services.call_provider import get_call_provider
from app.services.orchestrator_service import build_orchestrator, get_reconciliation_scheduler
from app.services.qualification_service import get_qualification_client

settings = get_settings()
configure_logging(settings.LOG_LEVEL)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Creates the schema / data directory up front
    store = get_batch_store()

    scheduler = get_reconciliation_scheduler()
    if scheduler is not None:
        scheduler.start()
        orchestrator = build_orchestrator(
            store, get_call_provider(), get_qualification_client(), scheduler=scheduler
        )
        try:
            orchestrator.resume_reconciliation()
        except StoreError as e:
            logger.error("Could not resume background reconciliation", extra={"error": str(e)})
    yield
    if scheduler is not None:
        scheduler.shutdown()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# Routers
app.include_router(batches_router.router)


@app.get("/health")
def health_check(store: BatchStore = Depends(get_batch_store)):
    store_status = "ok"
    try:
        store.ping()
    except StoreError:
        store_status = "error"

    return {
        "status": "ok" if store_status == "ok" else "degraded",
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "store": store_status,
    }
