"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lesionscan.api.routes import router
from lesionscan.config import get_settings
from lesionscan.errors import DecodeError, GeometryError, InferenceError, ModelNotReadyError
from lesionscan.ml.image_classifier import LesionClassifier
from lesionscan.ml.inference import InferencePool
from lesionscan.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the classifier on startup, release it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting LesionScan (device=%s, model=%s, threshold=%.2f, max_concurrent=%s)",
        settings.device,
        settings.model_name,
        settings.malignant_threshold,
        settings.max_concurrent,
    )

    inference_pool = InferencePool(settings)
    model_manager = OnnxModelManager(settings)
    classifier = LesionClassifier(settings, model_manager)
    app.state.inference_pool = inference_pool
    app.state.model_manager = model_manager
    app.state.classifier = classifier

    if classifier.initialize():
        logger.info("LesionScan ready")
    else:
        logger.warning("LesionScan started without a usable model; classification requests will fail")
    yield

    logger.info("Shutting down LesionScan")
    classifier.dispose()
    model_manager.shutdown()
    inference_pool.shutdown()
    logger.info("LesionScan shutdown complete")


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def _handle_invalid_input(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(422, exc)


async def _handle_not_ready(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


async def _handle_inference_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Inference failed for %s: %s", request.url.path, exc)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


async def _handle_busy(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Inference busy, retry shortly"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="LesionScan",
        description="Skin lesion crop geometry and on-device classification API",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(DecodeError, _handle_invalid_input)
    application.add_exception_handler(GeometryError, _handle_invalid_input)
    application.add_exception_handler(ModelNotReadyError, _handle_not_ready)
    application.add_exception_handler(InferenceError, _handle_inference_error)
    application.add_exception_handler(TimeoutError, _handle_busy)

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("lesionscan.main:app", host=settings.host, port=settings.port)
