"""Restorative assembly of per-tile recognition results into one row string."""

from .assembler import (
    OverlapComparison,
    RestorativeAssembler,
    assemble_fragments,
    clean_latex,
)
from .tokenizer import LatexTokenizer, normalize_latex

__all__ = [
    "OverlapComparison",
    "RestorativeAssembler",
    "assemble_fragments",
    "clean_latex",
    "LatexTokenizer",
    "normalize_latex",
]
