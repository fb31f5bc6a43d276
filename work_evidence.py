"""
Work-friendliness evaluation.

Looks for lexical evidence in review text (and, on the conditional
path, the venue name) that people can work from a venue.  How much
evidence is needed depends on how the classifier accepted the place:

    name_asserted   any generic work/seating/wifi keyword
    type_validated  generic keywords for cafe-like kinds, a narrower
                    set for libraries and hotels
    conditional     cafe-root term in the name AND a strong work phrase
                    in the reviews

A review mentioning milk tea / boba overrides all of the above: the
only requirement is a wifi mention.

The bare token "work" is ambiguous ("wifi doesn't work", "I work
here") so it counts only inside a positive phrase ("place to work",
"work from") and never inside a negative one.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from keyword_match import contains_any, covered, normalize_text, starts_word, term_spans
from place_classifier import ClassificationResult, is_cafe_like
from search_config import SEARCH_POLICY, SearchPolicy
from venue_types import ClassificationPath, Review

Span = Tuple[int, int]


@dataclass
class WorkEvidence:
    accepted: bool
    matched_terms: List[str] = field(default_factory=list)
    reason: str = ""


def review_text(reviews: Iterable[Review]) -> str:
    """Normalised text of every review, one per line."""
    return "\n".join(normalize_text(r.text) for r in reviews if r and r.text)


def _phrase_spans(text: str, phrases: Sequence[str]) -> List[Span]:
    spans: List[Span] = []
    for phrase in phrases:
        spans.extend(term_spans(text, phrase, inflect=False))
    return spans


def _term_counts(text: str, term: str, positive: List[Span], negative: List[Span]) -> bool:
    # "work" alone is matched exactly; "works"/"worked" are not evidence.
    if term == "work":
        spans = term_spans(text, term, inflect=False)
        return any(covered(s, positive) and not covered(s, negative) for s in spans)
    return any(not covered(s, negative) for s in term_spans(text, term))


def matched_work_terms(
    text: str,
    terms: Sequence[str],
    policy: SearchPolicy = SEARCH_POLICY,
) -> List[str]:
    """Terms from *terms* with usable evidence in normalised *text*."""
    if not text:
        return []
    positive = _phrase_spans(text, policy.work.work_positive)
    negative = _phrase_spans(text, policy.work.work_negative)
    return [t for t in terms if _term_counts(text, t, positive, negative)]


def has_work_keyword(text: str, policy: SearchPolicy = SEARCH_POLICY) -> bool:
    return bool(matched_work_terms(normalize_text(text), policy.work.generic, policy))


def evaluate_work_friendliness(
    name: str,
    reviews: Sequence[Review],
    classification: ClassificationResult,
    policy: SearchPolicy = SEARCH_POLICY,
) -> WorkEvidence:
    """Accept or reject a classified venue on its review evidence."""
    if not classification.eligible or classification.path is None:
        return WorkEvidence(False, reason="not eligible")

    words = policy.work
    text = review_text(reviews)

    if contains_any(text, words.milk_tea):
        terms = matched_work_terms(text, words.wifi, policy)
        if terms:
            return WorkEvidence(True, terms, "milk tea venue with wifi")
        return WorkEvidence(False, reason="milk tea venue without wifi mention")

    path = classification.path
    if path == ClassificationPath.CONDITIONAL:
        folded_name = normalize_text(name)
        if not any(starts_word(folded_name, root) for root in words.cafe_roots):
            return WorkEvidence(False, reason="conditional type without cafe name")
        terms = matched_work_terms(text, words.strong_phrases, policy)
        if terms:
            return WorkEvidence(True, terms, "conditional: strong work phrase")
        return WorkEvidence(False, reason="conditional: no strong work phrase")

    if path == ClassificationPath.TYPE_VALIDATED and not is_cafe_like(classification.venue_kind):
        vocabulary = words.narrow
    else:
        vocabulary = words.generic
    terms = matched_work_terms(text, vocabulary, policy)
    if terms:
        return WorkEvidence(True, terms, f"{path.value}: work keywords")
    return WorkEvidence(False, reason=f"{path.value}: no work keywords")


def work_reviews(
    reviews: Sequence[Review],
    limit: int = 3,
    policy: SearchPolicy = SEARCH_POLICY,
) -> List[Review]:
    """Up to *limit* reviews that carry a generic work keyword."""
    return [r for r in reviews if r.text and has_work_keyword(r.text, policy)][:limit]
