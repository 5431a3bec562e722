"""
Restorative assembly: merge per-tile LaTeX fragments into one row string.

Adjacent tiles share a strip of pixels, so the end of tile i and the start
of tile i+1 should read the same. Each boundary is classified:

- identical: the shared text is kept once
- similar:   the longer reading wins and a similarity repair is logged
- different: both readings are kept and a mismatch repair is logged

Every repair lowers the row confidence; mismatches cost more.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from rapidfuzz.distance import Levenshtein

from ..models import AssemblyResult, RepairEntry, RepairType, TileFragment
from ..utils.config import AssemblyConfig
from .tokenizer import LatexTokenizer, normalize_latex

logger = logging.getLogger(__name__)


@dataclass
class OverlapComparison:
    """Classification of one tile boundary."""

    identical: bool
    similar: bool
    similarity: float
    edit_distance: Optional[int]  # None when either side is empty
    token_overlap: float = 0.0


class RestorativeAssembler:
    """
    Merge tile fragments left to right with overlap verification.

    Usage:
        assembler = RestorativeAssembler()
        result = assembler.assemble([
            TileFragment(0, "x + y = 2z", offset_x=0, overlap_px=0),
            TileFragment(1, "z + 1 = w", offset_x=320, overlap_px=64),
        ])
        print(result.latex, result.confidence)
    """

    def __init__(self, config: Optional[AssemblyConfig] = None):
        self.config = config or AssemblyConfig()
        self.tokenizer = LatexTokenizer()

    def compare_overlaps(self, left: str, right: str) -> OverlapComparison:
        """Classify the tail of one tile against the head of the next."""
        if not left or not right:
            return OverlapComparison(False, False, 0.0, None)

        left_norm = normalize_latex(left)
        right_norm = normalize_latex(right)
        if left_norm == right_norm:
            return OverlapComparison(True, True, 1.0, 0, 1.0)

        similarity = Levenshtein.normalized_similarity(left_norm, right_norm)
        distance = Levenshtein.distance(left_norm, right_norm)

        # Short overlaps are a handful of tokens, so one misread digit sinks the
        # character ratio; shared tokens carry the decision there
        left_tokens = self.tokenizer.tokenize(left)
        right_tokens = self.tokenizer.tokenize(right)
        common = sum(1 for token in left_tokens if token in right_tokens)
        token_overlap = common / max(len(left_tokens), len(right_tokens), 1)

        cfg = self.config
        similar = (
            similarity >= cfg.similarity_threshold
            or token_overlap > cfg.token_overlap_threshold
            or (
                token_overlap > cfg.assisted_token_overlap
                and similarity > cfg.assisted_similarity
            )
        )
        return OverlapComparison(
            identical=False,
            similar=similar,
            similarity=max(similarity, token_overlap * cfg.token_overlap_weight),
            edit_distance=distance,
            token_overlap=token_overlap,
        )

    def assemble(self, fragments: Iterable[TileFragment]) -> AssemblyResult:
        """
        Merge fragments in tile order.

        Returns:
            AssemblyResult with the cleaned LaTeX, a confidence in
            (0, 1] (0.0 only when there are no fragments) and the repair log.
        """
        ordered = sorted(fragments, key=lambda f: f.tile_index)
        if not ordered:
            return AssemblyResult(latex="", confidence=0.0, tile_count=0)
        if len(ordered) == 1:
            return AssemblyResult(
                latex=clean_latex(ordered[0].latex), confidence=1.0, tile_count=1
            )

        logger.debug("Assembling %d tiles", len(ordered))

        merged = self.tokenizer.tokenize(ordered[0].latex)
        # Number of trailing merged tokens that came from the previous tile
        last_contribution = len(merged)
        # Indices in merged where an unverified tile join starts
        joins: List[int] = []
        confidence = 1.0
        repairs: List[RepairEntry] = []

        for prev, curr in zip(ordered, ordered[1:]):
            prev_tokens = self.tokenizer.tokenize(prev.latex)
            curr_tokens = self.tokenizer.tokenize(curr.latex)

            ratio = curr.overlap_px / curr.width if curr.width else 0.0
            if ratio <= 0:
                joins.append(len(merged))
                merged.extend(curr_tokens)
                last_contribution = len(curr_tokens)
                continue

            tail = self._overlap_tokens(prev_tokens, 1.0 - ratio, 1.0, from_end=True)
            head = self._overlap_tokens(curr_tokens, 0.0, ratio, from_end=False)
            left = self.tokenizer.tokens_to_latex(tail)
            right = self.tokenizer.tokens_to_latex(head)
            comparison = self.compare_overlaps(left, right)

            if comparison.identical:
                logger.debug("Tiles %d/%d: identical overlap %r", prev.tile_index, curr.tile_index, left)
                rest = curr_tokens[len(head):]

            elif comparison.similar:
                repaired = left if len(left) >= len(right) else right
                factor = (
                    self.config.similarity_repair_base
                    + self.config.similarity_repair_weight * comparison.similarity
                )
                confidence *= factor
                repairs.append(
                    RepairEntry(
                        type=RepairType.SIMILARITY,
                        tile_index=curr.tile_index,
                        edit_distance=comparison.edit_distance,
                        similarity=comparison.similarity,
                        original=(left, right),
                        repaired=repaired,
                    )
                )
                logger.info(
                    "Tiles %d/%d: similar overlap (%.2f) %r vs %r, kept %r",
                    prev.tile_index,
                    curr.tile_index,
                    comparison.similarity,
                    left,
                    right,
                    repaired,
                )

                replace = min(len(tail), last_contribution)
                if replace:
                    del merged[-replace:]
                merged.extend(self.tokenizer.tokenize(repaired))
                rest = curr_tokens[len(head):]

            else:
                confidence *= self.config.mismatch_penalty
                repairs.append(
                    RepairEntry(
                        type=RepairType.MISMATCH,
                        tile_index=curr.tile_index,
                        edit_distance=comparison.edit_distance,
                        similarity=comparison.similarity,
                        original=(left, right),
                    )
                )
                logger.warning(
                    "Tiles %d/%d: overlap mismatch %r vs %r (similarity %.2f)",
                    prev.tile_index,
                    curr.tile_index,
                    left,
                    right,
                    comparison.similarity,
                )
                joins.append(len(merged))
                rest = curr_tokens

            merged.extend(rest)
            last_contribution = len(rest)

        confidence = max(confidence, self.config.confidence_floor)
        latex = clean_latex(self._join(merged, joins))

        logger.debug(
            "Assembly complete: confidence=%.2f repairs=%d latex=%r",
            confidence,
            len(repairs),
            latex[:100],
        )
        return AssemblyResult(
            latex=latex, confidence=confidence, repairs=repairs, tile_count=len(ordered)
        )

    def _join(self, tokens: List[str], joins: List[int]) -> str:
        # Tokens from both sides of an unverified join never fuse into one
        bounds = [0] + joins + [len(tokens)]
        pieces = (
            self.tokenizer.tokens_to_latex(tokens[start:end])
            for start, end in zip(bounds, bounds[1:])
        )
        return " ".join(piece for piece in pieces if piece)

    def _overlap_tokens(
        self, tokens: List[str], start_ratio: float, end_ratio: float, from_end: bool
    ) -> List[str]:
        segment = self.tokenizer.estimate_tokens_in_range(tokens, start_ratio, end_ratio)
        minimum = min(self.config.min_overlap_tokens, len(tokens))
        if len(segment) < minimum:
            segment = tokens[-minimum:] if from_end else tokens[:minimum]
        return segment


def assemble_fragments(
    fragments: Iterable[TileFragment], config: Optional[AssemblyConfig] = None
) -> AssemblyResult:
    """Single-shot assembly with a throwaway assembler."""
    return RestorativeAssembler(config).assemble(fragments)


# Signs directly after these characters are unary and stay attached
_UNARY_CONTEXT = "{([^_=<>,"
_RELATIONS = "=<>,"

_DUPLICATE_OPERATORS = [
    (re.compile(r"\+\s*\+"), "+"),
    (re.compile(r"-\s*-"), "+"),
    (re.compile(r"\+\s*-"), "-"),
    (re.compile(r"-\s*\+"), "-"),
    (re.compile(r"=\s*="), "="),
]


def clean_latex(latex: Optional[str]) -> str:
    """
    Final cleanup of a merged row string.

    Collapses whitespace, folds doubled operators into the algebraically
    equivalent single one (``- -`` becomes ``+``), pads binary operators
    with single spaces and trims whitespace just inside braces.
    """
    if not latex:
        return ""

    text = re.sub(r"\s+", " ", latex)
    text = re.sub(r"\\times\s*\\times", r"\\times", text)

    previous = None
    while previous != text:
        previous = text
        for pattern, replacement in _DUPLICATE_OPERATORS:
            text = pattern.sub(replacement, text)

    text = _pad_operators(text)
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\{\s+", "{", text)
    text = re.sub(r"\s+\}", "}", text)
    return text.strip()


def _pad_operators(text: str) -> str:
    parts = re.split(r"\s*([+\-=])\s*", text)
    out = parts[0]
    for i in range(1, len(parts), 2):
        op, rest = parts[i], parts[i + 1]
        head = out.rstrip()
        prev = head[-1:]
        if op in "+-" and (not prev or prev in _UNARY_CONTEXT):
            out = head + (" " if prev and prev in _RELATIONS else "") + op + rest
        else:
            out = f"{head} {op} {rest}"
    return out
