from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coupon_engine.api.v1 import api_router
from coupon_engine.core.config import settings
from coupon_engine.core.logging_config import configure_logging, request_id_ctx_var
from coupon_engine.middleware import RequestLoggingMiddleware
from coupon_engine.schemas.error import ErrorResponse


def _error_response(status_code: int, *, detail: object, code: str | None) -> JSONResponse:
    payload = ErrorResponse(detail=detail, code=code, request_id=request_id_ctx_var.get())
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload.model_dump()))


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    tags_metadata = [
        {"name": "coupons", "description": "Coupon validation and multi-coupon resolution"},
        {"name": "health", "description": "Liveness and readiness probes"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        swagger_ui_parameters={"displayRequestDuration": True},
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, detail=exc.detail, code=None)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error_response(422, detail=jsonable_encoder(exc.errors()), code="validation_error")

    return app


app = get_application()
