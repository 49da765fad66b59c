"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from lesionscan import pipeline
from lesionscan.api.middleware import read_upload, settings_from_request, verify_api_key
from lesionscan.api.schemas import (
    Classification,
    ClassifyImageResponse,
    CropRect,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    ScanResponse,
)
from lesionscan.errors import ModelNotReadyError
from lesionscan.imaging.geometry import (
    CenteredBoxSelection,
    CropSelection,
    RectSelection,
    ViewportGeometry,
)
from lesionscan.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from lesionscan.config import Settings
    from lesionscan.imaging.geometry import PixelCropRect
    from lesionscan.ml.image_classifier import ClassificationResult, LesionClassifier
    from lesionscan.ml.inference import InferencePool
    from lesionscan.ml.model_manager import OnnxModelManager

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    413: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_classifier(request: Request) -> LesionClassifier:
    classifier: LesionClassifier = request.app.state.classifier
    return classifier


def _get_model_manager(request: Request) -> OnnxModelManager:
    manager: OnnxModelManager = request.app.state.model_manager
    return manager


def _build_selection(
    settings: Settings,
    left: float | None,
    top: float | None,
    width: float | None,
    height: float | None,
    box_size: float | None,
) -> CropSelection:
    rect_fields = (left, top, width, height)
    if all(v is not None for v in rect_fields):
        return RectSelection(left=left, top=top, width=width, height=height)  # type: ignore[arg-type]
    if any(v is not None for v in rect_fields):
        raise HTTPException(
            status_code=422,
            detail="left, top, width and height must be given together",
        )
    return CenteredBoxSelection(side=box_size if box_size is not None else settings.target_box_size)


def _to_schema(result: ClassificationResult) -> Classification:
    return Classification(
        label=result.label,
        confidence=result.confidence,
        is_positive=result.is_positive,
        description=result.description,
        summary=result.summary,
        confidence_percent=result.confidence_percent,
    )


def _rect_to_schema(rect: PixelCropRect) -> CropRect:
    return CropRect(x=rect.x, y=rect.y, width=rect.width, height=rect.height)


@router.post(
    "/crop",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"image/jpeg": {}}},
        **_ERROR_RESPONSES,
    },
    summary="Crop an image to a display-space selection",
)
async def crop_image(
    request: Request,
    file: UploadFile,
    preview_width: Annotated[float, Form()],
    preview_height: Annotated[float, Form()],
    left: Annotated[float | None, Form()] = None,
    top: Annotated[float | None, Form()] = None,
    width: Annotated[float | None, Form()] = None,
    height: Annotated[float | None, Form()] = None,
    box_size: Annotated[float | None, Form()] = None,
) -> Response:
    """Return the cropped JPEG; the pixel rectangle is in the X-Crop-Rect header."""
    settings = settings_from_request(request)
    data = await read_upload(request, file)
    viewport = ViewportGeometry(preview_width=preview_width, preview_height=preview_height)
    selection = _build_selection(settings, left, top, width, height, box_size)

    outcome = await run_in_threadpool(pipeline.crop, data, viewport, selection, settings)
    rect = outcome.rect
    return Response(
        content=outcome.jpeg,
        media_type="image/jpeg",
        headers={"X-Crop-Rect": f"{rect.x},{rect.y},{rect.width},{rect.height}"},
    )


@router.post(
    "/classify",
    response_model=ClassifyImageResponse,
    responses={status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse}, **_ERROR_RESPONSES},
    summary="Classify an already cropped lesion image",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse:
    """Classify an uploaded image."""
    classifier = _get_classifier(request)
    if not classifier.is_ready:
        raise ModelNotReadyError(f"Classifier {classifier.model_name} is not initialized")

    data = await read_upload(request, file)
    result = await _get_inference_pool(request).run(classifier.classify, data)
    return ClassifyImageResponse(model=classifier.model_name, result=_to_schema(result))


@router.post(
    "/scan",
    response_model=ScanResponse,
    responses={status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse}, **_ERROR_RESPONSES},
    summary="Crop an image and classify the crop",
)
async def scan_image(
    request: Request,
    file: UploadFile,
    preview_width: Annotated[float, Form()],
    preview_height: Annotated[float, Form()],
    left: Annotated[float | None, Form()] = None,
    top: Annotated[float | None, Form()] = None,
    width: Annotated[float | None, Form()] = None,
    height: Annotated[float | None, Form()] = None,
    box_size: Annotated[float | None, Form()] = None,
) -> ScanResponse:
    """Crop to the selection, save the crop, and classify it."""
    settings = settings_from_request(request)
    classifier = _get_classifier(request)
    if not classifier.is_ready:
        raise ModelNotReadyError(f"Classifier {classifier.model_name} is not initialized")

    data = await read_upload(request, file)
    viewport = ViewportGeometry(preview_width=preview_width, preview_height=preview_height)
    selection = _build_selection(settings, left, top, width, height, box_size)

    outcome = await _get_inference_pool(request).run(
        pipeline.scan, data, viewport, selection, classifier, settings
    )
    return ScanResponse(
        model=classifier.model_name,
        crop=_rect_to_schema(outcome.rect),
        crop_path=str(outcome.crop_path),
        result=_to_schema(outcome.result),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = settings_from_request(request)
    pool = _get_inference_pool(request)
    classifier = _get_classifier(request)
    return HealthResponse(
        status="ok" if classifier.is_ready else "degraded",
        ready=classifier.is_ready,
        gpu=settings.device == "cuda",
        model=classifier.model_name,
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered models, marking the configured one as active."""
    settings = settings_from_request(request)
    models = [
        ModelInfo(
            name=spec.name,
            output=spec.output_kind,
            input_size=spec.input_size,
            status="active" if spec.name == settings.model_name else "available",
            license=spec.license,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)
