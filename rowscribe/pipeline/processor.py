"""
Row processor: partition -> tiles -> recognizer -> restorative merge -> row.

One pass over a row extracts its tiles, recognizes them as a batch, waits
for every tile, assembles the fragments and writes the result back to the
row. Failures stay on the failing row; sibling rows are unaffected.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..assembly import RestorativeAssembler
from ..models import Element, OCRStatus, RepairEntry, TileFragment
from ..rows import RowPartitioner, parse_row_id
from ..tiling import TilingEngine, row_tile_hash
from ..tiling.raster import RasterLike
from ..utils import constants as C
from ..utils.config import PipelineConfig
from ..utils.errors import RowBusyError, RowNotFoundError, RowscribeError, format_error_for_user
from .cache import TileTextCache
from .worker_pool import ProgressCallback, RecognizerPool

logger = logging.getLogger(__name__)


@dataclass
class RowOutcome:
    """Result of one row pass."""

    row_id: str
    status: OCRStatus
    latex: Optional[str] = None
    confidence: float = 0.0
    repairs: List[RepairEntry] = field(default_factory=list)
    tile_count: int = 0
    error: Optional[str] = None
    stale: bool = False  # row was edited mid-pass; result discarded
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is OCRStatus.COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rowId": self.row_id,
            "status": self.status.value,
            "latex": self.latex,
            "confidence": self.confidence,
            "repairs": [r.to_dict() for r in self.repairs],
            "tileCount": self.tile_count,
            "error": self.error,
            "stale": self.stale,
            "elapsedMs": round(self.elapsed_ms, 1),
        }


@dataclass
class SweepReport:
    """Per-row outcomes of a process_all() sweep."""

    outcomes: Dict[str, RowOutcome] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)  # not started (cancelled)
    busy: List[str] = field(default_factory=list)  # already being processed
    cancelled: bool = False

    @property
    def succeeded(self) -> List[str]:
        return sorted(r for r, o in self.outcomes.items() if o.ok)

    @property
    def failed(self) -> List[str]:
        return sorted(r for r, o in self.outcomes.items() if o.status is OCRStatus.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": [self.outcomes[r].to_dict() for r in sorted(self.outcomes, key=parse_row_id)],
            "skipped": self.skipped,
            "busy": self.busy,
            "cancelled": self.cancelled,
        }


def _index_elements(elements: Any) -> Dict[str, Element]:
    if isinstance(elements, dict):
        return {k: Element.from_snapshot(v) for k, v in elements.items()}
    indexed = {}
    for raw in elements:
        element = Element.from_snapshot(raw)
        indexed[element.id] = element
    return indexed


class RowProcessor:
    """
    Drive recognition passes over rows.

    Usage:
        processor = RowProcessor.from_config(partitioner, MockOCREngine("x + 1"))
        outcome = processor.process_row("row-0", elements, raster_source)
        report = processor.process_all(elements, raster_source)
    """

    def __init__(
        self,
        partitioner: RowPartitioner,
        pool: RecognizerPool,
        tiling: Optional[TilingEngine] = None,
        assembler: Optional[RestorativeAssembler] = None,
        row_workers: int = C.DEFAULT_ROW_WORKERS,
    ):
        self.partitioner = partitioner
        self.pool = pool
        self.tiling = tiling or TilingEngine()
        self.assembler = assembler or RestorativeAssembler()
        self.row_workers = max(1, row_workers)

        self._in_flight: set = set()
        self._busy_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        partitioner: RowPartitioner,
        engine,
        config: Optional[PipelineConfig] = None,
    ) -> "RowProcessor":
        config = config or PipelineConfig()
        pool = RecognizerPool(
            engine,
            pool_size=config.pool_size,
            max_retries=config.max_retries,
            cache=TileTextCache(config.tile_cache_size),
        )
        return cls(
            partitioner,
            pool,
            tiling=TilingEngine.from_config(config.tiling),
            assembler=RestorativeAssembler(config.assembly),
            row_workers=config.row_workers,
        )

    def close(self) -> None:
        self.pool.shutdown()

    def is_processing(self, row_id: str) -> bool:
        with self._busy_lock:
            return row_id in self._in_flight

    def process_row(
        self,
        row_id: str,
        elements: Any,
        source: RasterLike,
        progress: Optional[ProgressCallback] = None,
    ) -> RowOutcome:
        """
        Run one recognition pass over a row.

        Raises:
            InvalidRowIdError / RowNotFoundError: For bad or unknown row ids.
            RowBusyError: If the row is already being processed.
        """
        parse_row_id(row_id)
        if self.partitioner.get_row(row_id) is None:
            raise RowNotFoundError(row_id)

        with self._busy_lock:
            if row_id in self._in_flight:
                raise RowBusyError(row_id)
            self._in_flight.add(row_id)

        try:
            return self._run_pass(row_id, _index_elements(elements), source, progress)
        finally:
            with self._busy_lock:
                self._in_flight.discard(row_id)

    def process_all(
        self,
        elements: Any,
        source: RasterLike,
        cancel: Optional[threading.Event] = None,
        row_ids: Optional[Iterable[str]] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> SweepReport:
        """
        Process many rows concurrently and report each one independently.

        By default every row whose status is pending or error is processed.
        Setting ``cancel`` stops rows that have not started yet; rows already
        in flight finish their tile batch.
        """
        if row_ids is None:
            row_ids = [
                row.id
                for row in self.partitioner.all_rows()
                if row.ocr_status in (OCRStatus.PENDING, OCRStatus.ERROR)
            ]
        row_ids = list(row_ids)
        by_id = _index_elements(elements)
        report = SweepReport()
        report_lock = threading.Lock()

        def run(row_id: str) -> None:
            if cancel is not None and cancel.is_set():
                with report_lock:
                    report.skipped.append(row_id)
                return
            try:
                outcome = self.process_row(row_id, by_id, source, progress)
            except RowBusyError:
                with report_lock:
                    report.busy.append(row_id)
                return
            except Exception as e:
                # A bug in one row must not take the sweep down with it
                logger.exception("Unexpected failure processing %s", row_id)
                outcome = RowOutcome(
                    row_id=row_id, status=OCRStatus.ERROR, error=format_error_for_user(e)
                )
            with report_lock:
                report.outcomes[row_id] = outcome

        start = time.perf_counter()
        with ThreadPoolExecutor(
            max_workers=self.row_workers, thread_name_prefix="row"
        ) as executor:
            list(executor.map(run, row_ids))

        report.cancelled = cancel is not None and cancel.is_set()
        report.skipped.sort(key=parse_row_id)
        logger.info(
            "Sweep finished in %.0fms: %d ok, %d failed, %d skipped, %d busy",
            (time.perf_counter() - start) * 1000,
            len(report.succeeded),
            len(report.failed),
            len(report.skipped),
            len(report.busy),
        )
        return report

    def _run_pass(
        self,
        row_id: str,
        elements: Dict[str, Element],
        source: RasterLike,
        progress: Optional[ProgressCallback],
    ) -> RowOutcome:
        start = time.perf_counter()
        revision = self.partitioner.content_revision(row_id)
        row = self.partitioner.update_row(row_id, ocr_status=OCRStatus.PROCESSING, error_message=None)
        row_elements = [elements[i] for i in row.element_ids if i in elements]

        try:
            tiles = self.tiling.extract_tiles_with_images(row, row_elements, source)
            results = self.pool.process_tiles(tiles, progress)
        except RowscribeError as e:
            return self._fail(row_id, revision, format_error_for_user(e), start)
        except Exception as e:
            self._fail(row_id, revision, format_error_for_user(e), start)
            raise

        failures = [r for r in results if not r.ok]
        if failures:
            first = failures[0]
            message = f"Tile {first.tile_index} failed: {first.error}"
            return self._fail(row_id, revision, message, start, tile_count=len(tiles))

        fragments = [TileFragment.from_tile(t, r.text) for t, r in zip(tiles, results)]
        assembly = self.assembler.assemble(fragments)
        elapsed_ms = (time.perf_counter() - start) * 1000

        with self.partitioner.lock:
            if self.partitioner.content_revision(row_id) != revision:
                logger.info("%s changed during recognition, discarding result", row_id)
                return RowOutcome(
                    row_id=row_id,
                    status=OCRStatus.PENDING,
                    tile_count=len(tiles),
                    stale=True,
                    elapsed_ms=elapsed_ms,
                )

            self.partitioner.update_row(
                row_id,
                ocr_status=OCRStatus.COMPLETE,
                transcribed_latex=assembly.latex,
                tile_hash=row_tile_hash(t.hash for t in tiles) if tiles else None,
                error_message=None,
            )

        logger.info(
            "%s recognized: %r (confidence %.2f, %d tiles, %d repairs) in %.0fms",
            row_id,
            assembly.latex,
            assembly.confidence,
            assembly.tile_count,
            len(assembly.repairs),
            elapsed_ms,
        )
        return RowOutcome(
            row_id=row_id,
            status=OCRStatus.COMPLETE,
            latex=assembly.latex,
            confidence=assembly.confidence,
            repairs=assembly.repairs,
            tile_count=assembly.tile_count,
            elapsed_ms=elapsed_ms,
        )

    def _fail(
        self,
        row_id: str,
        revision: int,
        message: str,
        start: float,
        tile_count: int = 0,
    ) -> RowOutcome:
        elapsed_ms = (time.perf_counter() - start) * 1000
        with self.partitioner.lock:
            if self.partitioner.content_revision(row_id) != revision:
                logger.info("%s changed during a failed pass, leaving it pending", row_id)
                return RowOutcome(
                    row_id=row_id,
                    status=OCRStatus.PENDING,
                    tile_count=tile_count,
                    error=message,
                    stale=True,
                    elapsed_ms=elapsed_ms,
                )
            self.partitioner.update_row(
                row_id, ocr_status=OCRStatus.ERROR, error_message=message
            )

        logger.error("%s failed: %s", row_id, message)
        return RowOutcome(
            row_id=row_id,
            status=OCRStatus.ERROR,
            tile_count=tile_count,
            error=message,
            elapsed_ms=elapsed_ms,
        )
