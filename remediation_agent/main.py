# remediation_agent/main.py
import logging
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from remediation_agent.core.config import settings
from remediation_agent.core.exceptions import (
    CapabilityGapError,
    PlanningError,
    RemediationError,
    SessionNotFoundError,
    SessionStorageError,
    ValidationError,
)
from remediation_agent.core.logging_config import setup_logging
from remediation_agent.api.v1.api import api_router as api_v1_router

# Setup logging FIRST
setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    version="0.1.0"
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_v1_router, prefix=settings.API_V1_STR)


@app.get("/", tags=["Root"], summary="Root endpoint for service status")
async def read_root():
    """Returns a welcome message indicating the service is running."""
    return {"message": f"Welcome to the {settings.APP_NAME}"}


def _error_response(status_code: int, exc: RemediationError) -> JSONResponse:
    content = {"detail": exc.message}
    session_id = getattr(exc, "session_id", None)
    if session_id:
        content["sessionId"] = session_id
    return JSONResponse(status_code=status_code, content=content)


def jsonable_errors(exc: RequestValidationError):
    # model_validator errors carry the raw ValueError in ctx, which JSONResponse cannot encode
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}", exc_info=False)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_errors(exc)},
    )


@app.exception_handler(SessionNotFoundError)
async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
    logger.warning(exc.message)
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(ValidationError)
async def remediation_validation_handler(request: Request, exc: ValidationError):
    logger.warning(f"Rejected request: {exc.message}")
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(CapabilityGapError)
async def capability_gap_handler(request: Request, exc: CapabilityGapError):
    logger.error(f"Capability gap for session {exc.session_id}: {exc.message}")
    return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)


@app.exception_handler(PlanningError)
async def planning_error_handler(request: Request, exc: PlanningError):
    logger.error(f"Planning failed for session {exc.session_id}: {exc.message}")
    return _error_response(status.HTTP_502_BAD_GATEWAY, exc)


@app.exception_handler(SessionStorageError)
async def storage_error_handler(request: Request, exc: SessionStorageError):
    logger.critical(f"Session storage failure: {exc.message}")
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


@app.exception_handler(RemediationError)
async def remediation_error_handler(request: Request, exc: RemediationError):
    logger.error(f"Remediation error during request to {request.url}: {exc.message}", exc_info=True)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception during request to {request.url}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred."},
    )


@app.on_event("startup")
async def startup_event():
    logger.info("Application startup...")
    logger.info(f"Application '{settings.APP_NAME}' started successfully.")
    logger.info(f"Session directory: {settings.SESSION_DIR}")
    logger.info(f"Reasoning model: {settings.LLM_MODEL}")
    logger.info(f"Automatic-mode defaults: confidence >= {settings.DEFAULT_CONFIDENCE_THRESHOLD}, "
                f"risk <= {settings.DEFAULT_MAX_RISK_LEVEL}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Application shutdown...")
    logger.info("Application shutdown complete.")
