import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from easyshift.api.v1.extraction import router as extraction_router
from easyshift.core.config import get_settings
from easyshift.services.ai.common.errors import ExtractionError

settings = get_settings()

logger = logging.getLogger(__name__)

app = FastAPI(
    title="EasyShiftHQ Extraction API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(extraction_router, prefix="/api/v1", tags=["extraction"])


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.exception_handler(ExtractionError)
async def _extraction_error_handler(request: Request, exc: ExtractionError):
    if exc.status_code >= 500:
        logger.error("Extraction failed (%s): %s", exc.status_code, exc.error)
    else:
        logger.warning("Extraction rejected (%s): %s", exc.status_code, exc.error)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_body()))


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx unless explicitly enabled.
    if exc.status_code >= 500 and not get_settings().expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"error": "Internal server error"})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if get_settings().expose_error_details:
        return JSONResponse(status_code=500, content={"error": "Unexpected error", "details": str(exc)})
    return JSONResponse(status_code=500, content={"error": "Unexpected error"})
