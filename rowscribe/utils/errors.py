"""
Error types and user-facing error reports for rowscribe.

Contract violations by callers (bad element identity, degenerate geometry,
invalid tile parameters) raise one of the exceptions below. Per-row
pipeline failures are captured on the row as a formatted message instead
of propagating, so one bad row never stops its siblings.
"""

from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """How bad an error is for the row or command that hit it."""

    INFO = auto()  # Nothing failed; the request was declined
    WARNING = auto()  # Degraded result, the row can be retried
    ERROR = auto()  # The row or command failed
    CRITICAL = auto()  # Retrying will not help


@dataclass
class ErrorContext:
    """
    Presentation data for one error.

    Built from a RowscribeError directly, or guessed from the type of a
    foreign exception.
    """

    title: str  # Short label for a status line or row overlay
    message: str
    technical_details: Optional[str]
    suggestions: List[str] = field(default_factory=list)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    recoverable: bool = True  # Can the row be retried?

    @classmethod
    def from_exception(cls, exc: Exception, context: str = "") -> "ErrorContext":
        """Describe any exception, using its type to pick the wording."""
        if isinstance(exc, RowscribeError):
            return exc.to_context()

        details = f"{type(exc).__name__}: {exc}"
        if context:
            details += f"\nContext: {context}"

        if isinstance(exc, (TimeoutError, FutureTimeoutError)):
            return cls(
                title="Timeout",
                message="The recognizer took too long and the row was abandoned.",
                technical_details=details,
                suggestions=["Retry the row", "Split very long rows into shorter ones"],
                severity=ErrorSeverity.WARNING,
            )

        if isinstance(exc, ImportError):
            return cls(
                title="Missing Dependency",
                message=f"A required package is not installed: {exc.name or exc}",
                technical_details=details,
                suggestions=["Run: pip install -e .[ocr]"],
                severity=ErrorSeverity.CRITICAL,
                recoverable=False,
            )

        if isinstance(exc, OSError):
            return cls(
                title="File Error",
                message=f"Could not read or write a file: {exc}",
                technical_details=details,
                suggestions=["Check the path and its permissions"],
            )

        return cls(
            title="Error",
            message=f"Unexpected error: {exc}",
            technical_details=details,
            suggestions=["Retry the row"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "suggestions": list(self.suggestions),
            "details": self.technical_details,
            "level": self.severity.name.lower(),
            "recoverable": self.recoverable,
        }


class RowscribeError(Exception):
    """
    Base exception for all rowscribe errors.

    Subclasses set a title, default suggestions and a severity; callers may
    override the last two per instance.
    """

    default_title = "Error"
    default_suggestions: List[str] = []
    default_severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        *,
        suggestions: Optional[List[str]] = None,
        technical_details: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
    ):
        super().__init__(message)
        self.user_message = message
        self.suggestions = list(suggestions) if suggestions else list(self.default_suggestions)
        self.technical_details = technical_details
        self.severity = severity or self.default_severity

    def to_context(self) -> ErrorContext:
        return ErrorContext(
            title=self.default_title,
            message=self.user_message,
            technical_details=self.technical_details,
            suggestions=self.suggestions,
            severity=self.severity,
            recoverable=self.severity is not ErrorSeverity.CRITICAL,
        )


# === Configuration ===


class ConfigError(RowscribeError):
    """Raised when configuration values are invalid."""

    default_title = "Configuration Error"
    default_suggestions = [
        "Check the config file for typos in section or key names",
        "Remove the key to fall back to the default value",
    ]


# === Row partition errors ===


class InvalidElementError(RowscribeError):
    """Raised when an element has no usable identity."""

    default_title = "Invalid Element"
    default_suggestions = [
        "Every element snapshot needs a non-empty string 'id'",
    ]

    def __init__(self, element=None, reason: str = "Element must have a valid id"):
        super().__init__(reason, technical_details=f"Element: {element!r}")
        self.element = element


class InvalidRowIdError(RowscribeError):
    """Raised when a row id is not of the form 'row-<index>'."""

    default_title = "Invalid Row"
    default_suggestions = ["Row ids look like 'row-0', 'row-1', ..."]

    def __init__(self, row_id):
        super().__init__(f"Invalid row id: {row_id!r}")
        self.row_id = row_id


class RowNotFoundError(InvalidRowIdError):
    """Raised when a well-formed row id refers to a row that was never created."""

    default_title = "Row Not Found"
    default_suggestions = [
        "Rows are created when content is drawn in them",
        "Use create_new_row() to add an empty row explicitly",
    ]

    def __init__(self, row_id: str):
        RowscribeError.__init__(self, f"Row {row_id} not found")
        self.row_id = row_id


class StateRestoreError(RowscribeError):
    """Raised when a serialized partitioner state cannot be restored."""

    default_title = "Restore Error"
    default_suggestions = [
        "The saved canvas state may be corrupted",
        "Start from an empty canvas and redraw",
    ]


# === Tiling errors ===


class TilingError(RowscribeError):
    """Base class for tile extraction failures."""

    default_title = "Tiling Error"


class InvalidTileParametersError(TilingError):
    """Raised for negative/non-finite widths or an overlap not smaller than the tile."""

    default_title = "Invalid Tile Parameters"
    default_suggestions = [
        "Row width must be a finite, non-negative number",
        "Overlap must be smaller than the tile size",
    ]


class DegenerateGeometryError(TilingError):
    """Raised when a row's bounding box has zero or negative extent."""

    default_title = "Degenerate Geometry"
    default_suggestions = [
        "A row cannot be tiled when its content has no width or height",
        "Draw a little more content in the row and retry",
    ]

    def __init__(self, width: float, height: float):
        super().__init__(
            f"Invalid bounding box: width={width}, height={height}",
            technical_details="Bounding box width and height must both be positive",
        )
        self.width = width
        self.height = height


class RenderError(TilingError):
    """Raised when a tile cannot be sampled from the raster source."""

    default_title = "Render Error"
    default_suggestions = [
        "Check that the raster source covers the row",
        "Retry once the canvas has finished rendering",
    ]


# === Recognition errors ===


class OCRError(RowscribeError):
    """Raised when OCR processing fails."""

    default_title = "OCR Error"
    default_suggestions = [
        "Ensure strokes are clearly visible",
        "Retry the row",
        "Enter the expression manually instead",
    ]


class RowBusyError(RowscribeError):
    """Raised when a row is already being processed."""

    default_title = "Row Busy"
    default_severity = ErrorSeverity.INFO
    default_suggestions = ["Wait for the current pass to finish"]

    def __init__(self, row_id: str):
        super().__init__(f"Row {row_id} is already being processed")
        self.row_id = row_id


# === Formatting ===


def format_error_for_user(exc: Exception, context: str = "") -> str:
    """
    One-line message for a row's error_message or the CLI's stderr.

    The first suggestion, if any, is appended as a hint.
    """
    ctx = ErrorContext.from_exception(exc, context)
    if not ctx.suggestions:
        return ctx.message
    return f"{ctx.message} Try: {ctx.suggestions[0]}"


def format_error_for_report(exc: Exception, context: str = "") -> Dict[str, Any]:
    """JSON-ready description of an error for machine-readable output."""
    return ErrorContext.from_exception(exc, context).to_dict()
