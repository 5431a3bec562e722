"""
LaTeX tokenizer used by the restorative merge.

Splits recognized text into atomic units and reassembles them with
canonical spacing:

    "x^2 + 4x + 4"     -> ["x", "^", "2", "+", "4", "x", "+", "4"]
    "\\frac{a}{b}"      -> ["\\frac", "{", "a", "}", "{", "b", "}"]
    "\\sum_{i=1}^{n}"   -> ["\\sum", "_", "{", "i", "=", "1", "}", "^", "{", "n", "}"]
"""

import math
import re
import string
from typing import List, Optional, Sequence

# Order matters: commands before escaped symbols before single characters
_TOKEN_RE = re.compile(
    r"""
    \\[A-Za-z]+                 # command: \frac, \alpha
    | \\.?                      # escaped symbol: \{, \, (or a lone trailing backslash)
    | [{}^_]                    # structural characters
    | [+\-=*/]                  # operators
    | \d+                       # digit run
    | [A-Za-z]+                 # letter run
    | [^\sA-Za-z\d\\{}^_+\-=*/]+  # any other run: parentheses, commas, primes
    """,
    re.VERBOSE,
)

OPERATORS = frozenset("+-=*/^_")
_SCRIPT = frozenset("^_")


_DIGIT_RE = re.compile(r"\d")


def _char_class(ch: str) -> str:
    # Mirrors the token classes above, so non-ASCII letters count as "other"
    if ch in string.ascii_letters:
        return "alpha"
    if _DIGIT_RE.match(ch):
        return "digit"
    return "other"


def normalize_latex(latex: Optional[str]) -> str:
    """Collapse whitespace and drop it around operators and braces."""
    if not latex:
        return ""
    text = re.sub(r"\s+", " ", latex)
    text = re.sub(r"\s*([+\-=*/])\s*", r"\1", text)
    text = re.sub(r"\s*([{}])\s*", r"\1", text)
    return text.strip()


class LatexTokenizer:
    """Tokenize LaTeX and rebuild strings from tokens."""

    def tokenize(self, latex: Optional[str]) -> List[str]:
        if not latex:
            return []
        return _TOKEN_RE.findall(latex)

    def tokens_to_latex(self, tokens: Optional[Sequence[str]]) -> str:
        """
        Join tokens with canonical spacing.

        Operators get a space on each side, scripts and braces bind tightly,
        commands are separated from their arguments only when the argument is
        not braced. Two tokens that would fuse into one when re-tokenized are
        always kept apart, so ``tokenize(tokens_to_latex(t)) == t``.
        """
        if not tokens:
            return ""

        parts = [tokens[0]]
        for prev, token in zip(tokens, tokens[1:]):
            if self.needs_space_before(token, prev):
                parts.append(" ")
            parts.append(token)
        return "".join(parts).strip()

    def needs_space_before(self, token: str, prev: Optional[str]) -> bool:
        if not prev:
            return False
        if self._would_fuse(prev, token):
            return True
        if prev == "{" or token == "}":
            return False
        if token == "{" and not prev.startswith("\\"):
            return False
        if prev in _SCRIPT or token in _SCRIPT:
            return False
        if token in OPERATORS or prev in OPERATORS:
            return True
        if prev.startswith("\\") and token not in "{}":
            return True
        return token.startswith("\\")

    @staticmethod
    def _would_fuse(prev: str, token: str) -> bool:
        # A command absorbs following letters; runs absorb same-class runs
        if prev == "\\":
            return True
        if prev.startswith("\\"):
            return prev[1] in string.ascii_letters and token[0] in string.ascii_letters
        if prev[-1] in "{}" or token[0] in "{}\\":
            return False
        if prev in OPERATORS or token in OPERATORS:
            return False
        return _char_class(prev[-1]) == _char_class(token[0])

    @staticmethod
    def estimate_tokens_in_range(
        tokens: Sequence[str], start_ratio: float, end_ratio: float
    ) -> List[str]:
        """
        Tokens falling within a fractional horizontal span of a tile.

        Uses ``floor(start_ratio * n)`` to ``ceil(end_ratio * n)``.
        """
        if not tokens:
            return []
        n = len(tokens)
        return list(tokens[math.floor(n * start_ratio) : math.ceil(n * end_ratio)])
