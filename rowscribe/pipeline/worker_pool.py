"""
Bounded recognizer pool.

Tiles of one row are submitted as a batch; process_tiles() blocks until
every tile has a terminal result (text or error), then returns them in
tile order. Failed calls are retried up to max_retries times.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed, wait as wait_for
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from ..models import RecognitionResult, Tile
from ..utils import constants as C
from ..utils.errors import OCRError
from .cache import TileTextCache

logger = logging.getLogger(__name__)

# (row_id, completed, total)
ProgressCallback = Callable[[str, int, int], None]


@dataclass
class RecognitionTask:
    """One tile submitted to the recognizer."""

    tile: Tile
    max_retries: int
    attempts: int = 0

    @property
    def key(self) -> str:
        return f"{self.tile.row_id}/{self.tile.tile_index}"


class RecognizerPool:
    """
    Fixed-size thread pool in front of a recognizer engine.

    Usage:
        with RecognizerPool(MockOCREngine("x + 1")) as pool:
            results = pool.process_tiles(tiles, progress=print)
    """

    def __init__(
        self,
        engine,
        pool_size: int = C.DEFAULT_POOL_SIZE,
        max_retries: int = C.DEFAULT_MAX_RETRIES,
        cache: Optional[TileTextCache] = None,
    ):
        if pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {pool_size}")

        self.engine = engine
        self.pool_size = pool_size
        self.max_retries = max_retries
        self.cache = cache if cache is not None else TileTextCache(0)

        self._executor = ThreadPoolExecutor(
            max_workers=pool_size, thread_name_prefix="recognizer"
        )
        self._lock = threading.Lock()
        self._active = 0
        self._queued = 0
        self._closed = False

        logger.info("Created recognizer pool with %d workers", pool_size)

    def __enter__(self) -> "RecognizerPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def submit(self, tile: Tile) -> "Future[RecognitionResult]":
        """Queue one tile. The future never raises; failures become error results."""
        if tile.image is None:
            raise OCRError(f"Tile {tile.tile_index} of {tile.row_id} has no rendered image")

        with self._lock:
            if self._closed:
                raise OCRError("Recognizer pool is shut down")
            self._queued += 1

        task = RecognitionTask(tile=tile, max_retries=self.max_retries)
        return self._executor.submit(self._run, task)

    def process_tiles(
        self,
        tiles: Sequence[Tile],
        progress: Optional[ProgressCallback] = None,
    ) -> List[RecognitionResult]:
        """
        Recognize a row's tiles and wait for all of them.

        Cached tiles complete immediately. Progress is reported as tiles
        finish, in completion order.

        Returns:
            One RecognitionResult per tile, ordered by tile index.
        """
        if not tiles:
            return []

        total = len(tiles)
        row_id = tiles[0].row_id
        results: Dict[int, RecognitionResult] = {}
        completed = 0

        def report():
            if progress is not None:
                progress(row_id, completed, total)

        futures = {}
        for tile in tiles:
            cached = self.cache.get(tile.hash)
            if cached is not None:
                results[tile.tile_index] = RecognitionResult(
                    row_id=tile.row_id,
                    tile_index=tile.tile_index,
                    text=cached,
                    attempts=0,
                    cached=True,
                )
                completed += 1
                report()
            else:
                try:
                    futures[self.submit(tile)] = tile
                except Exception:
                    self._abandon(futures)
                    raise

        for future in as_completed(futures):
            result = future.result()
            results[result.tile_index] = result
            if result.ok:
                self.cache.put(futures[future].hash, result.text)
            completed += 1
            report()

        logger.debug(
            "Recognized %d tiles for %s (%d cached)",
            total,
            row_id,
            total - len(futures),
        )
        return [results[tile.tile_index] for tile in sorted(tiles, key=lambda t: t.tile_index)]

    def _run(self, task: RecognitionTask) -> RecognitionResult:
        tile = task.tile
        with self._lock:
            self._queued -= 1
            self._active += 1

        try:
            image = tile.image.to_pil()
            last_error: Optional[Exception] = None

            while task.attempts <= task.max_retries:
                task.attempts += 1
                start = time.perf_counter()
                try:
                    result = self.engine.image_to_latex(image)
                except Exception as e:
                    last_error = e
                    if task.attempts <= task.max_retries:
                        logger.warning(
                            "Retrying tile %s (attempt %d/%d): %s",
                            task.key,
                            task.attempts,
                            task.max_retries,
                            e,
                        )
                    continue

                logger.debug(
                    "Tile %s recognized in %.0fms: %r",
                    task.key,
                    (time.perf_counter() - start) * 1000,
                    result.latex[:50],
                )
                return RecognitionResult(
                    row_id=tile.row_id,
                    tile_index=tile.tile_index,
                    text=result.latex,
                    attempts=task.attempts,
                )

            logger.error(
                "Tile %s failed after %d attempts: %s", task.key, task.attempts, last_error
            )
            return RecognitionResult(
                row_id=tile.row_id,
                tile_index=tile.tile_index,
                error=str(last_error),
                attempts=task.attempts,
            )
        finally:
            with self._lock:
                self._active -= 1

    def _abandon(self, futures) -> None:
        # Cancel what has not started and wait for the rest before giving up
        running = []
        for future in futures:
            if future.cancel():
                with self._lock:
                    self._queued -= 1
            else:
                running.append(future)
        wait_for(running)
        if futures:
            logger.warning(
                "Abandoned row batch: %d tiles cancelled, %d finished",
                len(futures) - len(running),
                len(running),
            )

    def status(self) -> Dict[str, int]:
        with self._lock:
            return {
                "poolSize": self.pool_size,
                "activeTasks": self._active,
                "queuedTasks": self._queued,
                "cachedTiles": len(self.cache),
            }

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tiles; in-flight calls finish when wait is True."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        logger.info("Shutting down recognizer pool")
        self._executor.shutdown(wait=wait)
