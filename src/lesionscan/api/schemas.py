"""Pydantic request/response schemas for the LesionScan API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CropRect(BaseModel):
    """Pixel rectangle in source image coordinates."""

    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(ge=1)
    height: int = Field(ge=1)


class Classification(BaseModel):
    """A single classification result."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    is_positive: bool
    description: str
    summary: str = Field(description="'Potentially Concerning' or 'Benign'")
    confidence_percent: str


class ClassifyImageResponse(BaseModel):
    """Response for the classify endpoint."""

    model: str
    result: Classification


class ScanResponse(BaseModel):
    """Response for the crop-and-classify endpoint."""

    model: str
    crop: CropRect
    crop_path: str
    result: Classification


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    ready: bool
    gpu: bool
    model: str
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    output: str = Field(description="Output contract: 'binary' or 'multiclass'")
    input_size: int
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
