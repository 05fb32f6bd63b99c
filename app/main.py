import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.v1.router import router as v1_router
from app.core.config import settings
from app.core.errors import DispatchCoreError
from app.core.telemetry import setup_telemetry
from app.schemas.common import ErrorResponse
from app.services.container import build_services


log = logging.getLogger(__name__)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

_STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "INVALID_TRANSITION": 409,
    "CONCURRENT_UPDATE": 409,
    "REORDER_PARTIAL_FAILURE": 409,
    "MISSING_EVIDENCE": 422,
    "INVALID_RECORD": 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = build_services()
    app.state.services = services
    await services.start()
    try:
        yield
    finally:
        await services.aclose()


async def dispatch_error_handler(request: Request, exc: DispatchCoreError) -> JSONResponse:
    status_code = _STATUS_BY_CODE.get(exc.code, 400)
    if status_code >= 409:
        log.info("request rejected path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    body = ErrorResponse(code=exc.code, message=exc.message, details=exc.details)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def create_app() -> FastAPI:
    app = FastAPI(title="Dispatch API", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(DispatchCoreError, dispatch_error_handler)
    if settings.otel_enabled:
        setup_telemetry(app)
    app.include_router(v1_router)
    return app


app = create_app()
