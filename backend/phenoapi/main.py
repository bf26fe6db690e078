"""FastAPI application: patient owner/consent endpoints and diagnosis suggestions."""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from phenoapi.api.routes import build_router
from phenoapi.diagnosis.script import DiagnosisScriptService
from phenoapi.diagnosis.service import build_diagnosis_service
from phenoapi.errors import PhenoApiError
from phenoapi.records.service import PatientAccessService
from phenoapi.records.store import PatientStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    t0 = time.time()
    if getattr(app.state, "access_service", None) is None:
        logger.info("Loading patient store...")
        app.state.access_service = PatientAccessService(PatientStore.load())
    if getattr(app.state, "script_service", None) is None:
        logger.info("Loading vocabulary and diagnosis indexes...")
        service = build_diagnosis_service()
        if not service.is_ready():
            logger.warning("Vocabulary not loaded! Diagnosis suggestions will be empty.")
        app.state.script_service = DiagnosisScriptService(service)
    elapsed = time.time() - t0
    logger.info(f"Startup complete in {elapsed:.1f}s")
    yield
    logger.info("Shutting down.")


def _error_body(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PhenoApiError)
    async def domain_error_handler(request: Request, exc: PhenoApiError):
        logger.info(f"{request.method} {request.url.path} → {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        message = "; ".join(
            f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body("BAD_REQUEST", message),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error in {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("INTERNAL_ERROR", "Internal server error."),
        )


def create_app(
    access_service: PatientAccessService | None = None,
    script_service: DiagnosisScriptService | None = None,
) -> FastAPI:
    """Build the app; services not passed in are loaded from settings at startup."""
    app = FastAPI(
        title="PhenoAPI — patient records and diagnosis suggestion",
        description="Owner and consent management for patient records, diagnosis suggestion from phenotypes",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.access_service = access_service
    app.state.script_service = script_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_exception_handlers(app)
    app.include_router(build_router())

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint with vocabulary status."""
        script_service = request.app.state.script_service
        return {
            "status": "ok",
            "vocabulary_ready": script_service is not None and script_service.service.is_ready(),
        }

    return app


app = create_app()
