from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from hospital_admin.api.routes import auth, cron, health
from hospital_admin.core.config import get_settings
from hospital_admin.core.exceptions import AppError, InternalError, InvalidInputError
from hospital_admin.core.middleware import RequestSizeLimitMiddleware, SecurityHeadersMiddleware
from hospital_admin.db.bootstrap import ensure_runtime_schema
from hospital_admin.db.session import engine
from hospital_admin.services.rate_limit import InMemoryRateLimiter

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.db_auto_create_schema:
        ensure_runtime_schema(engine)
    yield


def _error_body(exc: AppError) -> dict:
    return {"error": exc.code, "message": exc.message, "details": exc.details}


async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc), headers=exc.headers)


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Unhandled database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_error_body(InternalError()))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = sorted({".".join(str(part) for part in error.get("loc", ())[1:]) for error in exc.errors()})
    error = InvalidInputError(details={"fields": [field for field in fields if field]})
    return JSONResponse(status_code=error.status_code, content=_error_body(error))


app = FastAPI(title=settings.project_name, lifespan=lifespan)
# One limiter per process; tests swap it for a fresh instance.
app.state.rate_limiter = InMemoryRateLimiter()

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(SQLAlchemyError, database_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_size_bytes)
app.add_middleware(SecurityHeadersMiddleware, settings=settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(auth.router, prefix=f"{settings.api_prefix}/auth", tags=["auth"])
app.include_router(cron.router, prefix=f"{settings.api_prefix}/cron", tags=["cron"])
