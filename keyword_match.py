"""
Lexical matching shared by the evaluator, the amenity filters and the
summary generator.

Review text is normalised once (lower case, accents folded, "wi-fi"
spelled "wifi", hyphens as spaces) and terms are matched at word
starts with a small set of inflections, so "seat" finds "seating" and
"table" finds "tables" but "sit" never finds "site".
"""

import re
import unicodedata
from functools import lru_cache
from typing import Iterable, List, Tuple

_SUFFIXES = r"(?:s|es|ing|ting|ed|d)?"
_WIFI_RE = re.compile(r"\bwi[\s\-]?fi\b")
_SPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    if not text:
        return ""
    folded = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    folded = folded.lower().replace("’", "'").replace("‘", "'")
    folded = _WIFI_RE.sub("wifi", folded)
    folded = folded.replace("-", " ")
    return _SPACE_RE.sub(" ", folded).strip()


@lru_cache(maxsize=1024)
def _term_re(term: str, inflect: bool) -> "re.Pattern[str]":
    body = r"\s+".join(re.escape(part) for part in normalize_text(term).split(" "))
    tail = _SUFFIXES + r"\b" if inflect else r"\b"
    return re.compile(r"\b" + body + tail)


@lru_cache(maxsize=256)
def _prefix_re(term: str) -> "re.Pattern[str]":
    return re.compile(r"\b" + re.escape(normalize_text(term)))


def term_spans(text: str, term: str, inflect: bool = True) -> List[Tuple[int, int]]:
    """Character spans of *term* in already-normalised *text*."""
    return [m.span() for m in _term_re(term, inflect).finditer(text)]


def contains_term(text: str, term: str, inflect: bool = True) -> bool:
    return _term_re(term, inflect).search(text) is not None


def contains_any(text: str, terms: Iterable[str]) -> bool:
    return any(contains_term(text, t) for t in terms)


def matched_terms(text: str, terms: Iterable[str]) -> List[str]:
    return [t for t in terms if contains_term(text, t)]


def count_mentions(text: str, terms: Iterable[str]) -> int:
    return sum(len(term_spans(text, t)) for t in terms)


def starts_word(text: str, root: str) -> bool:
    """True when some word in *text* begins with *root* ('roast' in 'roasters')."""
    return _prefix_re(root).search(text) is not None


def covered(span: Tuple[int, int], spans: Iterable[Tuple[int, int]]) -> bool:
    """True when *span* lies inside any of *spans*."""
    start, end = span
    return any(s <= start and end <= e for s, e in spans)
