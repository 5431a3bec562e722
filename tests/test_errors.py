"""
Tests for error handling module.

Tests the centralized error handling with rich context and suggestions.
"""

import pytest


class TestErrorContext:
    """Test ErrorContext creation and conversion."""

    def test_from_ocr_error(self):
        """Test ErrorContext from OCRError."""
        from rowscribe.utils.errors import OCRError, ErrorContext

        exc = OCRError("Model failed to process image")
        ctx = ErrorContext.from_exception(exc)

        assert ctx.title == "OCR Error"
        assert "Model failed" in ctx.message
        assert len(ctx.suggestions) > 0  # Has default suggestions
        assert any("manually" in s.lower() for s in ctx.suggestions)

    def test_from_degenerate_geometry(self):
        """Test ErrorContext from DegenerateGeometryError."""
        from rowscribe.utils.errors import DegenerateGeometryError, ErrorContext

        exc = DegenerateGeometryError(0, 12)
        ctx = ErrorContext.from_exception(exc)

        assert ctx.title == "Degenerate Geometry"
        assert "width=0" in ctx.message
        assert ctx.recoverable is True

    def test_from_row_busy(self):
        """Test that a busy row is informational."""
        from rowscribe.utils.errors import RowBusyError, ErrorContext, ErrorSeverity

        ctx = ErrorContext.from_exception(RowBusyError("row-3"))

        assert ctx.title == "Row Busy"
        assert "row-3" in ctx.message
        assert ctx.severity == ErrorSeverity.INFO

    def test_from_timeout(self):
        """Test that timeout-like exceptions are detected."""
        from rowscribe.utils.errors import ErrorContext, ErrorSeverity

        ctx = ErrorContext.from_exception(TimeoutError("recognizer timed out"))

        assert ctx.title == "Timeout"
        assert ctx.severity == ErrorSeverity.WARNING

    def test_from_import_error(self):
        """Test that missing dependencies are unrecoverable."""
        from rowscribe.utils.errors import ErrorContext

        ctx = ErrorContext.from_exception(ImportError("No module named 'pix2tex'"))

        assert ctx.title == "Missing Dependency"
        assert ctx.recoverable is False
        assert any("pip install" in s for s in ctx.suggestions)

    def test_from_generic_exception(self):
        """Test ErrorContext from generic exception."""
        from rowscribe.utils.errors import ErrorContext

        exc = ValueError("Something went wrong")
        ctx = ErrorContext.from_exception(exc, context="during assembly")

        assert ctx.title == "Error"
        assert "Something went wrong" in ctx.message
        assert "assembly" in ctx.technical_details


class TestRowscribeError:
    """Test base RowscribeError class."""

    def test_custom_suggestions(self):
        """Test error with custom suggestions."""
        from rowscribe.utils.errors import OCRError

        exc = OCRError("Recognizer crashed", suggestions=["Try X", "Try Y"])

        assert exc.suggestions == ["Try X", "Try Y"]

    def test_default_suggestions_are_copied(self):
        """Test that mutating one error's suggestions leaves the class default alone."""
        from rowscribe.utils.errors import OCRError

        first = OCRError("a")
        first.suggestions.append("extra")

        assert "extra" not in OCRError("b").suggestions

    def test_to_context_conversion(self):
        """Test conversion to ErrorContext."""
        from rowscribe.utils.errors import StateRestoreError

        exc = StateRestoreError(
            "Corrupt row in saved state",
            technical_details="KeyError: 'yStart'",
        )

        ctx = exc.to_context()

        assert ctx.title == "Restore Error"
        assert ctx.message == "Corrupt row in saved state"
        assert "yStart" in ctx.technical_details


class TestHierarchy:
    """Test the exception hierarchy used by callers."""

    def test_row_not_found_is_invalid_row(self):
        """Test that RowNotFoundError can be caught as InvalidRowIdError."""
        from rowscribe.utils.errors import InvalidRowIdError, RowNotFoundError

        exc = RowNotFoundError("row-9")

        assert isinstance(exc, InvalidRowIdError)
        assert exc.row_id == "row-9"
        assert "not found" in str(exc)

    def test_tiling_errors(self):
        """Test that tiling failures share a base class."""
        from rowscribe.utils.errors import (
            DegenerateGeometryError,
            InvalidTileParametersError,
            RenderError,
            TilingError,
        )

        for exc in (
            DegenerateGeometryError(-1, 5),
            InvalidTileParametersError("bad overlap"),
            RenderError("sample failed"),
        ):
            assert isinstance(exc, TilingError)

    def test_invalid_element_keeps_payload(self):
        """Test that the offending element is attached to the error."""
        from rowscribe.utils.errors import InvalidElementError

        exc = InvalidElementError({"x": 1})

        assert exc.element == {"x": 1}
        assert "'x': 1" in exc.technical_details


class TestFormatFunctions:
    """Test error formatting utility functions."""

    def test_format_error_for_user(self):
        """Test brief user-friendly formatting."""
        from rowscribe.utils.errors import format_error_for_user, ConfigError

        exc = ConfigError("Unknown config key: 'tilling'")
        msg = format_error_for_user(exc, "testing")

        assert "tilling" in msg
        # Should include first suggestion
        assert "Try:" in msg

    def test_format_error_for_report(self):
        """Test report formatting."""
        from rowscribe.utils.errors import format_error_for_report, OCRError

        exc = OCRError("Model not loaded", technical_details="weights missing")
        info = format_error_for_report(exc, "testing OCR")

        assert info["title"] == "OCR Error"
        assert info["message"] == "Model not loaded"
        assert info["details"] == "weights missing"
        assert len(info["suggestions"]) == 3
        assert info["level"] == "error"
        assert info["recoverable"] is True

    def test_report_is_json_serializable(self):
        """Test that reports of foreign exceptions can be dumped as JSON."""
        import json
        from rowscribe.utils.errors import format_error_for_report

        info = format_error_for_report(FileNotFoundError(2, "No such file", "canvas.png"))

        assert json.loads(json.dumps(info))["title"] == "File Error"


class TestErrorSeverity:
    """Test error severity levels."""

    def test_critical_is_not_recoverable(self):
        """Test that CRITICAL errors are not recoverable."""
        from rowscribe.utils.errors import OCRError, ErrorSeverity

        ctx = OCRError("fatal", severity=ErrorSeverity.CRITICAL).to_context()

        assert ctx.recoverable is False

    def test_default_is_recoverable(self):
        """Test that ordinary errors are recoverable by default."""
        from rowscribe.utils.errors import RenderError

        assert RenderError("blank").to_context().recoverable is True


class TestIntegrationWithPartitioner:
    """Test that the partitioner raises the new error types."""

    def test_bad_row_id(self):
        """Test that malformed ids raise InvalidRowIdError with suggestions."""
        from rowscribe.rows import RowPartitioner
        from rowscribe.utils.errors import InvalidRowIdError

        rows = RowPartitioner()

        with pytest.raises(InvalidRowIdError) as exc_info:
            rows.set_active_row("first")

        assert exc_info.value.row_id == "first"
        assert len(exc_info.value.suggestions) > 0
