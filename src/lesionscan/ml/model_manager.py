"""Model manager: locate, download, and load ONNX lesion classifiers.

Handles the model registry, resolving model files from the local models
directory (optionally fetching them from a HuggingFace repo), bundled label
files, and creating and caching ONNX InferenceSessions.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import ExecutionMode, InferenceSession, SessionOptions

if TYPE_CHECKING:
    from lesionscan.config import Settings

logger = logging.getLogger(__name__)

ASSETS_DIR = Path(__file__).resolve().parent.parent / "assets"


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model file is present locally and return its path."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def labels_path(self, model_name: str) -> Path:
        """Return the path of the model's label file."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def release(self, model_name: str) -> None:
        """Drop the cached session for one model."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class OutputKind(StrEnum):
    BINARY = "binary"
    MULTICLASS = "multiclass"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classifier."""

    name: str
    filename: str
    labels_file: str
    input_size: int
    output_kind: OutputKind
    license: str


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "skin_cancer_binary": ModelSpec(
        name="skin_cancer_binary",
        filename="skin_cancer_model.onnx",
        labels_file="labels_cancer.txt",
        input_size=299,
        output_kind=OutputKind.BINARY,
        license="Apache-2.0",
    ),
    "ham10000_multiclass": ModelSpec(
        name="ham10000_multiclass",
        filename="ham10000_model.onnx",
        labels_file="labels_ham10000.txt",
        input_size=224,
        output_kind=OutputKind.MULTICLASS,
        license="CC-BY-NC-4.0",
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    """Look up a registry entry, raising KeyError for unknown names."""
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves model files and loads them into cached ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model file, fetching it from HuggingFace if missing.

        Raises:
            KeyError: If the model is not in the registry.
            FileNotFoundError: If the file is absent and no repo is configured.
        """
        spec = get_spec(model_name)

        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        local = self._models_dir / spec.filename
        if local.exists():
            self._model_paths[model_name] = local
            return local

        repo_id = self._settings.model_repo_id
        if repo_id is None:
            raise FileNotFoundError(
                f"Model file {local} not found and LESIONSCAN_MODEL_REPO_ID is not set"
            )

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=repo_id,
                filename=spec.filename,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                return cached

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                return existing
            self._sessions[model_name] = session
            logger.info("Loaded session for %s", model_name)
            return session

    def labels_path(self, model_name: str) -> Path:
        """Return the label file for a model.

        A file of the same name in the models directory takes precedence over
        the one bundled with the package.
        """
        spec = get_spec(model_name)
        override = self._models_dir / spec.labels_file
        if override.exists():
            return override
        return ASSETS_DIR / spec.labels_file

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def release(self, model_name: str) -> None:
        """Drop the cached session for one model."""
        with self._lock:
            if self._sessions.pop(model_name, None) is not None:
                logger.info("Released session for %s", model_name)

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        if self._settings.device == "cuda":
            return [
                ("CUDAExecutionProvider", {"device_id": 0}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True
        return opts
