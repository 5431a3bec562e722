"""
Configuration dataclasses for the partitioner, tiling engine, assembler and
recognition pipeline.

Defaults come from constants.py; a JSON file or dict may override any field:

    {
        "partition": {"row_height": 384},
        "tiling": {"overlap_px": 64},
        "assembly": {"similarity_threshold": 0.8},
        "pool_size": 2
    }
"""

import json
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Union

from . import constants as C
from .errors import ConfigError


@dataclass
class PartitionConfig:
    """Row band geometry."""

    row_height: float = C.ROW_HEIGHT
    start_y: float = C.START_Y
    canvas_min_y: float = C.CANVAS_MIN_Y
    canvas_max_y: float = C.CANVAS_MAX_Y

    def __post_init__(self):
        if not self.row_height or self.row_height <= 0:
            raise ConfigError(f"row_height must be positive, got {self.row_height}")
        if self.canvas_max_y <= self.canvas_min_y:
            raise ConfigError("canvas_max_y must be greater than canvas_min_y")


@dataclass
class TilingConfig:
    """Tile size and horizontal overlap."""

    tile_size: int = C.TILE_SIZE
    overlap_px: int = C.OVERLAP_PX
    render_workers: int = 1

    def __post_init__(self):
        if self.tile_size <= 0:
            raise ConfigError(f"tile_size must be positive, got {self.tile_size}")
        if not 0 <= self.overlap_px < self.tile_size:
            raise ConfigError(
                f"overlap_px must be in [0, {self.tile_size}), got {self.overlap_px}"
            )

    @property
    def stride(self) -> int:
        return self.tile_size - self.overlap_px


@dataclass
class AssemblyConfig:
    """
    Restorative merge tunables.

    A boundary is similar when the character similarity reaches
    ``similarity_threshold``, when more than ``token_overlap_threshold`` of
    the overlap tokens appear on both sides, or when both the token overlap
    and the similarity clear the weaker ``assisted_*`` pair.

    A similarity repair multiplies confidence by
    ``similarity_repair_base + similarity_repair_weight * similarity``;
    a mismatch multiplies it by ``mismatch_penalty``.
    """

    similarity_threshold: float = C.SIMILARITY_THRESHOLD
    similarity_repair_base: float = C.SIMILARITY_REPAIR_BASE
    similarity_repair_weight: float = C.SIMILARITY_REPAIR_WEIGHT
    mismatch_penalty: float = C.MISMATCH_PENALTY
    confidence_floor: float = C.CONFIDENCE_FLOOR
    min_overlap_tokens: int = C.MIN_OVERLAP_TOKENS
    token_overlap_threshold: float = C.TOKEN_OVERLAP_THRESHOLD
    assisted_token_overlap: float = C.ASSISTED_TOKEN_OVERLAP
    assisted_similarity: float = C.ASSISTED_SIMILARITY
    token_overlap_weight: float = C.TOKEN_OVERLAP_WEIGHT

    def __post_init__(self):
        if not 0.0 < self.similarity_threshold <= 1.0:
            raise ConfigError("similarity_threshold must be in (0, 1]")
        if not 0.0 < self.confidence_floor < 1.0:
            raise ConfigError("confidence_floor must be in (0, 1)")
        for name in (
            "token_overlap_threshold",
            "assisted_token_overlap",
            "assisted_similarity",
            "token_overlap_weight",
        ):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise ConfigError(f"{name} must be in [0, 1]")
        # Mismatches must always cost more than the worst similarity repair
        if self.mismatch_penalty >= self.similarity_repair_base:
            raise ConfigError(
                "mismatch_penalty must be lower than similarity_repair_base"
            )


@dataclass
class PipelineConfig:
    """Top-level configuration composed of the per-component sections."""

    partition: PartitionConfig = field(default_factory=PartitionConfig)
    tiling: TilingConfig = field(default_factory=TilingConfig)
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    pool_size: int = C.DEFAULT_POOL_SIZE
    max_retries: int = C.DEFAULT_MAX_RETRIES
    row_workers: int = C.DEFAULT_ROW_WORKERS
    tile_cache_size: int = C.TILE_CACHE_SIZE

    def __post_init__(self):
        if self.pool_size < 1:
            raise ConfigError(f"pool_size must be at least 1, got {self.pool_size}")
        if self.max_retries < 0:
            raise ConfigError("max_retries cannot be negative")
        if self.row_workers < 1:
            raise ConfigError("row_workers must be at least 1")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Build a config from a (possibly partial) nested dict."""
        if not isinstance(data, dict):
            raise ConfigError(f"Config must be a JSON object, got {type(data).__name__}")

        sections = {
            "partition": PartitionConfig,
            "tiling": TilingConfig,
            "assembly": AssemblyConfig,
        }
        kwargs: Dict[str, Any] = {}
        top_level = {f.name for f in fields(cls)} - set(sections)

        for key, value in data.items():
            if key in sections:
                kwargs[key] = _build_section(sections[key], value, key)
            elif key in top_level:
                kwargs[key] = value
            else:
                raise ConfigError(f"Unknown config key: '{key}'")

        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _build_section(section_cls, value, name: str):
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be an object")
    known = {f.name for f in fields(section_cls)}
    unknown = set(value) - known
    if unknown:
        raise ConfigError(
            f"Unknown keys in '{name}': {sorted(unknown)}",
            suggestions=[f"Valid keys: {sorted(known)}"],
        )
    return section_cls(**value)


def load_config(path: Optional[Union[str, Path]] = None) -> PipelineConfig:
    """
    Load configuration from a JSON file.

    Returns the defaults when path is None.
    """
    if path is None:
        return PipelineConfig()

    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigError(
            f"Config file is not valid JSON: {path}",
            technical_details=str(e),
        )

    return PipelineConfig.from_dict(data)
