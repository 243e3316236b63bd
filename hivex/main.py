import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables + FKs correctly
import hivex.models  # noqa: F401
from hivex.core.config import settings
from hivex.core.logging_config import configure_logging
from hivex.middleware import RequestLoggingMiddleware
from hivex.routers.analytics import router as analytics_router
from hivex.routers.coupons import router as coupons_router
from hivex.routers.deals import router as deals_router
from hivex.routers.member_coupons import router as member_coupons_router
from hivex.routers.members import router as members_router
from hivex.routers.venues import router as venues_router
from hivex.schemas.error import ErrorResponse
from hivex.services.exceptions import HivexError

logger = logging.getLogger(__name__)


def get_application() -> FastAPI:
    configure_logging(settings.LOG_JSON)

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # Accounts
    app.include_router(members_router)
    app.include_router(venues_router)

    # Deals + coupon lifecycle
    app.include_router(deals_router)
    app.include_router(member_coupons_router)
    app.include_router(coupons_router)

    # Broker
    app.include_router(analytics_router)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    @app.exception_handler(HivexError)
    async def hivex_error_handler(request: Request, exc: HivexError):
        if exc.status_code >= 500:
            # internals stay in the log
            logger.error("request failed: %s", exc.code, exc_info=exc)
            detail = "Internal server error"
        else:
            detail = exc.message
        payload = ErrorResponse(detail=detail, code=exc.code)
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(payload.model_dump()),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code="validation_error")
        return JSONResponse(status_code=422, content=payload.model_dump())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled error", exc_info=exc)
        payload = ErrorResponse(detail="Internal server error", code="internal_error")
        return JSONResponse(status_code=500, content=payload.model_dump())

    return app


app = get_application()
