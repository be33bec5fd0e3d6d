"""Main FastAPI application for the super-app assistant."""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config.settings import settings
from app.config.logging import get_logger
from app.api.v1.api import api_router
from app.core.dependencies import get_background_writer, get_llm_client, get_scratch_store, get_voice_handler
from app.core.middleware import (
    CorrelationIdMiddleware,
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from app.services.ai.orchestrator import ChatServiceError

# Get logger
logger = get_logger(__name__)

is_prod = settings.ENVIRONMENT.lower() == "production"
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=None if is_prod else f"{settings.API_V1_STR}/openapi.json",
    docs_url=None if is_prod else "/docs",
    redoc_url=None if is_prod else "/redoc",
)


def get_cors_config() -> dict:
    """CORS configuration; browsers reject credentials with a wildcard origin."""
    origins = settings.BACKEND_CORS_ORIGINS
    return {
        "allow_origins": origins,
        "allow_credentials": "*" not in origins,
        "allow_methods": ["POST", "GET", "OPTIONS"],
        "allow_headers": ["authorization", "x-client-info", "apikey", "content-type"],
        "max_age": 600,
    }


# Add middleware in order (last added = first executed)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(CORSMiddleware, **get_cors_config())


# Exception handlers; every error body is {success: false, error}
@app.exception_handler(ChatServiceError)
async def chat_service_exception_handler(request: Request, exc: ChatServiceError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    logger.info(f"Rejected request to {request.url.path}: invalid {', '.join(fields) or 'body'}")
    error = f"Invalid or missing fields: {', '.join(fields)}" if fields else "Invalid request body"
    return JSONResponse(status_code=400, content={"success": False, "error": error})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"success": False, "error": "Bilinmeyen bir hata oluştu"})


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": settings.VERSION
    }


# Include API router
app.include_router(api_router, prefix=settings.API_V1_STR)


@app.on_event("startup")
async def startup_event():
    logger.info(f"🚀 Starting {settings.PROJECT_NAME} v{settings.VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")


@app.on_event("shutdown")
async def shutdown_event():
    """Flush pending persistence writes and close upstream clients."""
    logger.info(f"🛑 Shutting down {settings.PROJECT_NAME}")

    writer = get_background_writer()
    if writer.pending:
        logger.info(f"Waiting for {writer.pending} background writes")
        await writer.drain()

    for closer in (get_llm_client().aclose, get_voice_handler().aclose, get_scratch_store().close):
        try:
            await closer()
        except Exception as e:
            logger.warning(f"⚠️ Cleanup warning: {e}")

    logger.info("✅ Shutdown complete")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
