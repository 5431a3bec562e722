"""
Recognizer engines for tile images.

Any object with ``image_to_latex(PIL.Image) -> OCRResult`` can serve as the
recognizer; the pipeline treats it as a black box returning one text
fragment per tile.
"""

import logging
import threading
import time
from typing import Callable, Sequence, Union

from PIL import Image

from ..models import OCRResult
from ..utils.errors import OCRError

logger = logging.getLogger(__name__)


# Delimiter pairs whose imbalance suggests the model cut an expression short
_DELIMITER_PENALTIES = (("{", "}", 0.2), ("(", ")", 0.1), ("[", "]", 0.1))
_GARBAGE = ("?", "�", "□")


class Pix2TexEngine:
    """
    Recognizer backed by the pix2tex LaTeX-OCR model.

    The model (~500MB) is imported and loaded on the first tile unless
    ``lazy_load`` is False. Loading is guarded by a lock because several
    pool workers may hit the first tile at once.

    Usage:
        engine = Pix2TexEngine()
        result = engine.image_to_latex(tile.image.to_pil())
    """

    def __init__(self, lazy_load: bool = True):
        self._model = None
        self._load_lock = threading.Lock()

        if not lazy_load:
            self._load_model()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def preload(self) -> None:
        """Load the model now instead of on the first tile."""
        self._load_model()

    def _load_model(self) -> None:
        with self._load_lock:
            if self._model is not None:
                return

            start = time.perf_counter()
            try:
                from pix2tex.cli import LatexOCR
            except ImportError as e:
                raise OCRError(
                    "pix2tex not installed",
                    suggestions=["Run: pip install -e .[ocr]"],
                    technical_details=str(e),
                ) from e

            try:
                self._model = LatexOCR()
            except Exception as e:
                raise OCRError(
                    "Failed to load the pix2tex model",
                    technical_details=f"{type(e).__name__}: {e}",
                ) from e

            logger.info("pix2tex model loaded in %.1fs", time.perf_counter() - start)

    def image_to_latex(self, image: Image.Image) -> OCRResult:
        """
        Recognize one tile.

        Raises:
            OCRError: If the model cannot be loaded or inference fails.
        """
        self._load_model()

        start = time.perf_counter()
        try:
            latex = self._model(image)
        except Exception as e:
            raise OCRError(f"pix2tex inference failed: {e}") from e

        return OCRResult(
            latex=latex,
            confidence=self._estimate_confidence(latex),
            processing_time_ms=int((time.perf_counter() - start) * 1000),
        )

    @staticmethod
    def _estimate_confidence(latex: str) -> float:
        """
        Rough per-tile score, since pix2tex reports none.

        Very short output, replacement characters and unbalanced delimiters
        each lower the score. Result is clamped to [0.3, 1.0].
        """
        if not latex or len(latex) < 3:
            return 0.3

        score = 1.0 if len(latex) >= 5 else 0.8
        score -= 0.15 * sum(latex.count(ch) for ch in _GARBAGE)
        for opening, closing, penalty in _DELIMITER_PENALTIES:
            if latex.count(opening) != latex.count(closing):
                score -= penalty

        return max(0.3, min(1.0, score))


Responses = Union[None, str, Sequence[str], Callable[[Image.Image], str]]


class MockOCREngine:
    """
    Scripted recognizer for tests and the ``--engine mock`` CLI mode.

    Args:
        responses: Fixed text, a list of texts returned in call order
            (the last one repeats), or a callable taking the tile image.
        fail_times: Number of initial calls that raise OCRError.
        delay_s: Simulated inference time per call.
    """

    def __init__(
        self,
        responses: Responses = None,
        fail_times: int = 0,
        delay_s: float = 0.0,
    ):
        self.responses = responses
        self.fail_times = fail_times
        self.delay_s = delay_s
        self.calls = 0
        self._lock = threading.Lock()

    def image_to_latex(self, image: Image.Image) -> OCRResult:
        with self._lock:
            call = self.calls
            self.calls += 1

        if self.delay_s:
            time.sleep(self.delay_s)
        if call < self.fail_times:
            raise OCRError(f"Mock recognizer failure #{call + 1}")

        latex = self._respond(image, call)
        return OCRResult(latex=latex, confidence=0.95, processing_time_ms=int(self.delay_s * 1000))

    def _respond(self, image: Image.Image, call: int) -> str:
        if self.responses is None:
            # Use image dimensions to vary output
            w, h = image.size
            return r"E = mc^2" if w > h else r"x^2 + 1"
        if isinstance(self.responses, str):
            return self.responses
        if callable(self.responses):
            return self.responses(image)

        index = min(call - self.fail_times, len(self.responses) - 1)
        return self.responses[index] if self.responses else ""

    @property
    def is_loaded(self) -> bool:
        return True

    def preload(self) -> None:
        pass


def create_engine(name: str, **kwargs):
    """
    Build a recognizer by name ('pix2tex' or 'mock').

    Raises:
        ValueError: For an unknown engine name.
    """
    if name == "pix2tex":
        return Pix2TexEngine(**kwargs)
    if name == "mock":
        return MockOCREngine(**kwargs)
    raise ValueError(f"Unknown recognizer engine: {name}")
