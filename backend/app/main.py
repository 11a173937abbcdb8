import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.attachments import router as attachments_router
from app.api.v1.bookings import router as bookings_router
from app.api.v1.salaries import router as salaries_router
from app.core.config import get_settings
from app.services.recurring_jobs import start_salary_reconcile_worker

settings = get_settings()
_salary_reconcile_task = None

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Tour Desk Ledger API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)


@app.on_event("startup")
async def _startup_jobs():
    global _salary_reconcile_task
    if _salary_reconcile_task is None and settings.enable_recurring_jobs:
        _salary_reconcile_task = start_salary_reconcile_worker()


@app.on_event("shutdown")
async def _shutdown_jobs():
    global _salary_reconcile_task
    if _salary_reconcile_task is not None:
        _salary_reconcile_task.cancel()
        _salary_reconcile_task = None


if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(bookings_router, prefix="/api/v1", tags=["bookings"])
app.include_router(attachments_router, prefix="/api/v1", tags=["attachments"])
app.include_router(salaries_router, prefix="/api/v1", tags=["salaries"])


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500 and not get_settings().expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal error"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(SQLAlchemyError)
async def _store_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Ledger store error on %s %s: %s", request.method, request.url.path, exc)
    underlying = getattr(exc, "orig", None) or exc
    return JSONResponse(
        status_code=500,
        content={"detail": "Ledger store error", "error": str(underlying)},
    )


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if get_settings().expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


@app.get("/health")
async def health():
    return {"status": "ok"}
