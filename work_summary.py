"""Short per-venue blurb built from the reviews that mention working there."""

from typing import Iterable, List, Sequence

from keyword_match import contains_any
from search_config import SEARCH_POLICY, SearchPolicy, SummaryPhrase
from venue_types import FilterTag, Review, ordered_filters
from work_evidence import review_text, work_reviews

SUMMARY_MARKER = "✨"
MAX_SUMMARY_CHARS = 150
MAX_PHRASES = 2
GENERIC_SUMMARY = f"{SUMMARY_MARKER} A comfortable space to settle in with a laptop."


def _first_match(text: str, candidates: Sequence[SummaryPhrase]) -> str:
    for candidate in candidates:
        if contains_any(text, candidate.keywords):
            return candidate.phrase
    return ""


def _collect(text: str, groups: Iterable[Sequence[SummaryPhrase]]) -> List[str]:
    phrases: List[str] = []
    for group in groups:
        phrase = _first_match(text, group)
        if phrase and phrase not in phrases:
            phrases.append(phrase)
        if len(phrases) >= MAX_PHRASES:
            break
    return phrases


def _truncate(summary: str) -> str:
    if len(summary) <= MAX_SUMMARY_CHARS:
        return summary
    return summary[: MAX_SUMMARY_CHARS - 1].rstrip() + "…"


def generate_summary(
    reviews: Sequence[Review],
    filters: Iterable[FilterTag],
    policy: SearchPolicy = SEARCH_POLICY,
) -> str:
    """One sentence such as '✨ Reviewers mention reliable WiFi and charging outlets.'

    Walks the active filters in chip order and keeps the first one or two
    feature phrases found in up to three work-related reviews, then falls
    back to generic wifi/outlet/quiet phrases.
    """
    evidence = work_reviews(reviews, limit=3, policy=policy)
    if not evidence:
        return GENERIC_SUMMARY

    text = review_text(evidence)
    phrases = _collect(
        text,
        (policy.summary_phrases.get(tag.value, ()) for tag in ordered_filters(filters)),
    )
    if not phrases:
        phrases = _collect(text, ((p,) for p in policy.fallback_summary_phrases))
    if not phrases:
        return f"{SUMMARY_MARKER} Reviewers say it works well for getting things done."

    return _truncate(f"{SUMMARY_MARKER} Reviewers mention {' and '.join(phrases)}.")
