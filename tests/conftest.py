"""Shared test fixtures for LesionScan."""

from __future__ import annotations

import io
from types import SimpleNamespace
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import numpy as np
import pytest
from PIL import Image

from lesionscan.config import Settings
from lesionscan.ml.model_manager import ASSETS_DIR, get_spec

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


def _encode(array: np.ndarray, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(array).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture()
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Factory for Settings with test-friendly defaults."""

    def _make(**overrides: object) -> Settings:
        defaults: dict[str, object] = {
            "device": "cpu",
            "model_name": "skin_cancer_binary",
            "models_dir": str(tmp_path / "models"),
            "model_repo_id": None,
            "crop_output_dir": str(tmp_path / "crops"),
            "api_key": None,
        }
        defaults.update(overrides)
        return Settings(**defaults)  # type: ignore[arg-type]

    return _make


@pytest.fixture()
def fake_session() -> Callable[..., MagicMock]:
    """Factory for a mock ONNX InferenceSession returning a fixed output."""

    def _make(output: np.ndarray, declared_shape: list[object] | None = None) -> MagicMock:
        session = MagicMock()
        session.get_inputs.return_value = [SimpleNamespace(name="input_1", shape=["batch", 299, 299, 3])]
        shape = declared_shape if declared_shape is not None else list(output.shape)
        session.get_outputs.return_value = [SimpleNamespace(name="output_0", shape=shape)]
        session.run.return_value = [output]
        return session

    return _make


@pytest.fixture()
def fake_manager() -> Callable[[MagicMock], MagicMock]:
    """Factory for a mock model manager serving a given session and bundled labels."""

    def _make(session: MagicMock) -> MagicMock:
        manager = MagicMock()
        manager.get_session.return_value = session
        manager.labels_path.side_effect = lambda name: ASSETS_DIR / get_spec(name).labels_file
        manager.get_loaded_models.return_value = []
        return manager

    return _make


@pytest.fixture()
def rgb_image() -> np.ndarray:
    """Random 64x48 (HxW) RGB image."""
    rng = np.random.default_rng(0)
    return rng.integers(0, 256, size=(64, 48, 3), dtype=np.uint8)


@pytest.fixture()
def png_bytes(rgb_image: np.ndarray) -> bytes:
    return _encode(rgb_image, "PNG")


@pytest.fixture()
def portrait_photo_bytes() -> bytes:
    """1200x1600 JPEG with a horizontal gradient, like a portrait phone capture."""
    gradient = np.tile(np.linspace(0, 255, 1200, dtype=np.uint8), (1600, 1))
    array = np.stack([gradient, gradient[::-1, ::-1], np.full_like(gradient, 128)], axis=-1)
    return _encode(array, "JPEG")
