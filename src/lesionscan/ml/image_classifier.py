"""Skin lesion classifier service.

Wraps one ONNX classifier behind an explicit lifecycle: ``initialize()`` loads
the label list and inference session once, ``classify()`` runs the fixed
decode -> resize -> normalize -> infer -> describe pipeline, ``dispose()``
releases the session. Two output contracts are supported and chosen at load
time from the model's declared output shape:

* binary sigmoid, shape ``[1, 1]``: one probability of the malignant class,
  turned into a label with a sensitivity-biased threshold;
* multi-class softmax, shape ``[1, K]``: argmax over ``K`` scores, labelled
  from the label file.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np

from lesionscan.errors import InferenceError, LesionScanError, ModelNotReadyError
from lesionscan.ml.model_manager import OutputKind, get_spec
from lesionscan.ml.preprocessing import preprocess

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from lesionscan.config import Settings
    from lesionscan.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

POSITIVE_LABEL = "Malignant"
NEGATIVE_LABEL = "Benign"
NO_DESCRIPTION = "No description available."

LABEL_DESCRIPTIONS: dict[str, str] = {
    "Benign": (
        "The lesion appears to be benign (non-cancerous). However, continue to monitor "
        "for any changes in size, shape, or color."
    ),
    "Malignant": (
        "The lesion shows characteristics that may indicate malignancy. Please consult a "
        "dermatologist for professional evaluation as soon as possible."
    ),
    "akiec": "Actinic keratoses: pre-cancerous lesions caused by sun damage. Dermatologist consultation recommended.",
    "bcc": "Basal cell carcinoma: the most common form of skin cancer. Seek medical attention promptly.",
    "bkl": "Benign keratosis: a non-cancerous skin growth. Routine monitoring is sufficient.",
    "df": "Dermatofibroma: a benign fibrous skin nodule. No treatment is typically needed.",
    "mel": "Melanoma: the most dangerous form of skin cancer. Seek specialist referral urgently.",
    "nv": "Melanocytic nevus: a common mole, typically benign. An annual skin check is recommended.",
    "vasc": "Vascular lesion: a blood-vessel related skin change, usually benign.",
}

# Multi-class labels reported as concerning.
CONCERNING_LABELS: frozenset[str] = frozenset({"Malignant", "mel", "bcc", "akiec"})


# ---------------------------------------------------------------------------
# Results and output variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of a single classification."""

    label: str
    confidence: float
    is_positive: bool
    description: str

    @property
    def confidence_percent(self) -> str:
        return f"{self.confidence * 100:.1f}%"

    @property
    def summary(self) -> str:
        return "Potentially Concerning" if self.is_positive else "Benign"


@dataclass(frozen=True)
class BinaryOutput:
    """Sigmoid output: probability of the positive class."""

    probability: float


@dataclass(frozen=True)
class MultiClassOutput:
    """Softmax output: one score per label."""

    scores: tuple[float, ...]


ModelOutput = BinaryOutput | MultiClassOutput


class ImageClassifier(Protocol):
    """Protocol for lesion classifiers."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def is_ready(self) -> bool:
        """True once the model and labels are loaded."""
        ...

    def classify(self, image_bytes: bytes) -> ClassificationResult:
        """Classify encoded image bytes."""
        ...

    def classify_file(self, path: str | Path) -> ClassificationResult:
        """Classify an image file on disk."""
        ...


def describe(label: str) -> str:
    """Return the human-readable description for a label."""
    return LABEL_DESCRIPTIONS.get(label, NO_DESCRIPTION)


def interpret_binary(output: BinaryOutput, threshold: float) -> ClassificationResult:
    """Apply the decision threshold to a sigmoid probability.

    Confidence is reported for the predicted class: ``p`` when positive,
    ``1 - p`` otherwise.
    """
    probability = output.probability
    is_malignant = probability >= threshold
    label = POSITIVE_LABEL if is_malignant else NEGATIVE_LABEL
    confidence = probability if is_malignant else 1.0 - probability
    return ClassificationResult(
        label=label,
        confidence=confidence,
        is_positive=is_malignant,
        description=describe(label),
    )


def interpret_multiclass(output: MultiClassOutput, labels: list[str]) -> ClassificationResult:
    """Pick the highest-scoring class; indices past the label list fall back to 0."""
    index = int(np.argmax(output.scores))
    if index >= len(labels):
        index = 0
    label = labels[index]
    return ClassificationResult(
        label=label,
        confidence=float(output.scores[index]),
        is_positive=label in CONCERNING_LABELS,
        description=describe(label),
    )


def load_labels(path: Path) -> list[str]:
    """Read a label file: one label per line, trimmed, blank lines skipped."""
    text = path.read_text(encoding="utf-8")
    return [line.strip() for line in text.splitlines() if line.strip()]


def detect_output_kind(session: InferenceSession, declared: OutputKind) -> OutputKind:
    """Choose the output contract from the session's declared output shape.

    Dynamic (symbolic) trailing dimensions fall back to the registry entry.
    """
    shape = session.get_outputs()[0].shape
    last = shape[-1] if shape else None
    if isinstance(last, int):
        return OutputKind.BINARY if last == 1 else OutputKind.MULTICLASS
    return declared


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class LesionClassifier:
    """Lifecycle-managed classifier bound to one registry model."""

    def __init__(self, settings: Settings, manager: ModelManager) -> None:
        self._spec = get_spec(settings.model_name)
        self._manager = manager
        self._threshold = settings.malignant_threshold
        self._input_size = settings.input_side_length or self._spec.input_size
        self._max_pixels = settings.max_image_pixels

        self._session: InferenceSession | None = None
        self._labels: list[str] = []
        self._output_kind: OutputKind = self._spec.output_kind
        self._input_name = ""
        self._run_lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def input_size(self) -> int:
        return self._input_size

    @property
    def output_kind(self) -> OutputKind:
        return self._output_kind

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    @property
    def is_ready(self) -> bool:
        return self._session is not None and bool(self._labels)

    def initialize(self) -> bool:
        """Load labels and the inference session. Returns False on failure."""
        try:
            labels = load_labels(self._manager.labels_path(self._spec.name))
            session = self._manager.get_session(self._spec.name)
            output_kind = detect_output_kind(session, self._spec.output_kind)
            input_name = session.get_inputs()[0].name
        except Exception:
            logger.exception("Error initializing classifier %s", self._spec.name)
            return False

        if not labels:
            logger.error("Label file for %s is empty", self._spec.name)
            return False

        self._labels = labels
        self._session = session
        self._output_kind = output_kind
        self._input_name = input_name
        logger.info(
            "Classifier %s initialized (output=%s, input=%dx%d, labels=%d)",
            self._spec.name,
            output_kind,
            self._input_size,
            self._input_size,
            len(labels),
        )
        return True

    def classify(self, image_bytes: bytes) -> ClassificationResult:
        """Run the full pipeline on encoded image bytes.

        Raises:
            ModelNotReadyError: If called before a successful ``initialize()``.
            DecodeError: If the bytes are not a decodable image.
            InferenceError: If the model fails or returns an unexpected shape.
        """
        session = self._session
        if session is None or not self._labels:
            raise ModelNotReadyError(f"Classifier {self._spec.name} is not initialized")

        tensor = preprocess(image_bytes, self._input_size, max_pixels=self._max_pixels)
        raw = self._run(session, tensor)
        output = self._parse_output(raw)

        if isinstance(output, BinaryOutput):
            return interpret_binary(output, self._threshold)
        return interpret_multiclass(output, self._labels)

    def classify_file(self, path: str | Path) -> ClassificationResult:
        """Classify an image file, e.g. a previously written crop."""
        if not self.is_ready:
            raise ModelNotReadyError(f"Classifier {self._spec.name} is not initialized")
        return self.classify(Path(path).read_bytes())

    def classify_or_none(self, image_bytes: bytes) -> ClassificationResult | None:
        """Like ``classify`` but logs failures and returns None."""
        try:
            return self.classify(image_bytes)
        except LesionScanError as exc:
            logger.warning("Classification failed: %s", exc)
            return None

    def dispose(self) -> None:
        """Release the session; the classifier is not ready afterwards."""
        if self._session is not None:
            self._manager.release(self._spec.name)
        self._session = None
        self._labels = []

    # -- Internal -----------------------------------------------------------

    def _run(self, session: InferenceSession, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        with self._run_lock:
            try:
                outputs = session.run(None, {self._input_name: tensor})
            except Exception as exc:
                raise InferenceError(f"Inference failed: {exc}") from exc
        return np.asarray(outputs[0], dtype=np.float32)

    def _parse_output(self, raw: NDArray[np.float32]) -> ModelOutput:
        if raw.ndim != 2 or raw.shape[0] != 1:
            raise InferenceError(f"Unexpected output shape {raw.shape}")
        if not np.all(np.isfinite(raw)):
            raise InferenceError(f"Model returned non-finite scores: {raw.tolist()}")
        if self._output_kind is OutputKind.BINARY:
            if raw.shape[1] != 1:
                raise InferenceError(f"Binary model returned shape {raw.shape}, expected (1, 1)")
            probability = float(raw[0, 0])
            if not 0.0 <= probability <= 1.0:
                raise InferenceError(f"Binary model returned probability {probability}, expected a value in [0, 1]")
            return BinaryOutput(probability=probability)
        if raw.shape[1] < 1:
            raise InferenceError(f"Multi-class model returned shape {raw.shape}")
        if not np.all((raw >= 0.0) & (raw <= 1.0)):
            raise InferenceError(f"Multi-class model returned scores outside [0, 1]: {raw.tolist()}")
        return MultiClassOutput(scores=tuple(float(s) for s in raw[0]))
