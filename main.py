import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings, get_settings
from contact_store import ContactStore
from db_models import IdentifyRequest, IdentifyResponse
from db_setup import init_db, transaction
from errors import DataIntegrityError, StoreConflictError
from logging_setup import get_logger, setup_logging
from middleware import SecurityHeadersMiddleware
from reconciliation import identify as reconcile

logger = get_logger("identity.api")


def reconcile_with_retry(settings: Settings, email, phone) -> IdentifyResponse:
    """Run one reconciliation per transaction, retrying the whole unit on lock conflicts."""
    attempt = 0
    while True:
        attempt += 1
        try:
            with transaction(settings.database_path, settings.db_timeout) as conn:
                return reconcile(ContactStore(conn), email, phone)
        except StoreConflictError as exc:
            if attempt > settings.max_retries:
                raise
            logger.warning("identify_conflict_retry", attempt=attempt, error=str(exc))
            time.sleep(settings.retry_backoff * attempt)


def _internal_error(settings: Settings, exc: Exception) -> JSONResponse:
    content = {"detail": "Internal server error"}
    if settings.debug:
        content["message"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def create_app(settings: Settings = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        init_db(settings.database_path)
        yield

    app = FastAPI(
        title="Identity Reconciliation API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(_: Request, exc: RequestValidationError):
        messages = [str(error.get("msg", "")).removeprefix("Value error, ") for error in exc.errors()]
        return JSONResponse(status_code=400, content={"detail": "; ".join(messages)})

    @app.exception_handler(DataIntegrityError)
    async def data_integrity_error(_: Request, exc: DataIntegrityError):
        logger.error("data_integrity_error", error=str(exc), contact_ids=exc.contact_ids)
        return _internal_error(settings, exc)

    @app.exception_handler(StoreConflictError)
    async def store_conflict_error(_: Request, exc: StoreConflictError):
        logger.error("identify_conflict_exhausted", error=str(exc), retries=settings.max_retries)
        return _internal_error(settings, exc)

    @app.exception_handler(Exception)
    async def unhandled_error(_: Request, exc: Exception):
        logger.exception("unhandled_error", error=str(exc))
        return _internal_error(settings, exc)

    @app.get("/")
    async def root():
        return {"message": "Identity reconciliation API is up"}

    @app.get("/health")
    async def health():
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/identify", response_model=IdentifyResponse)
    def identify(request: IdentifyRequest):
        return reconcile_with_retry(settings, request.email, request.phoneNumber)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
