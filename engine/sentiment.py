"""Headline sentiment classification and aggregation."""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from engine.models import HeadlineItem, NewsAnalysis, NewsImpact, Sentiment

logger = logging.getLogger(__name__)

# Stems are matched against the start of each word, so "launch" covers
# "launches" and "launched".
POSITIVE_TERMS = frozenset([
    "launch", "partnership", "growth", "success", "improv",
    "upgrade", "milestone", "achievement", "innovation", "bullish",
    "adoption", "advance", "progress", "breakthrough", "support",
    "boost", "surge", "rally", "gain", "approv",
])

NEGATIVE_TERMS = frozenset([
    "issue", "delay", "problem", "bug", "vulnerab",
    "hack", "decline", "suspend", "concern", "bearish",
    "crash", "risk", "warning", "threat", "crisis",
    "exploit", "lawsuit", "banned", "plunge", "outage",
])

# Words that start with a stem but carry none of its polarity.
STEM_EXCLUSIONS = frozenset([
    "hackathon", "hackathons", "issued", "issuer", "issuers",
])

MODIFIERS = frozenset([
    "not", "no", "never", "without", "despite", "lacks", "lack",
    "fails", "failed", "isn't", "aren't", "wasn't", "won't", "cannot",
    "barely", "hardly", "avoids", "avoided",
])

MODIFIER_WINDOW = 3
POLARITY_THRESHOLD = 0.25
SCORE_WEIGHTS = {
    Sentiment.POSITIVE: 1.0,
    Sentiment.NEGATIVE: -1.0,
    Sentiment.NEUTRAL: 0.0,
}
CONFIDENCE_FLOOR = 0.01

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+(?:'[a-z]+)?|[,.;:!?]")
_CLAUSE_BREAKS = frozenset(",.;:!?")


class SentimentScorer:
    """Lexicon-based headline classifier with negation handling."""

    def __init__(
        self,
        positive_terms: Iterable[str] = POSITIVE_TERMS,
        negative_terms: Iterable[str] = NEGATIVE_TERMS,
        modifiers: Iterable[str] = MODIFIERS,
        exclusions: Iterable[str] = STEM_EXCLUSIONS,
    ) -> None:
        self.positive_terms = frozenset(term.lower() for term in positive_terms)
        self.negative_terms = frozenset(term.lower() for term in negative_terms)
        overlap = self.positive_terms & self.negative_terms
        if overlap:
            raise ValueError(f"Sentiment term sets overlap: {sorted(overlap)}")
        self.modifiers = frozenset(word.lower() for word in modifiers)
        self.exclusions = frozenset(word.lower() for word in exclusions)

    def classify(self, text: str) -> Sentiment:
        positive, negative = self._count(text or "")
        total = positive + negative
        if total == 0:
            return Sentiment.NEUTRAL
        polarity = (positive - negative) / total
        if polarity > POLARITY_THRESHOLD:
            return Sentiment.POSITIVE
        if polarity < -POLARITY_THRESHOLD:
            return Sentiment.NEGATIVE
        return Sentiment.NEUTRAL

    def aggregate(self, items: Sequence[Union[HeadlineItem, Sentiment, str]]) -> float:
        """Mean sentiment rescaled from [-1, 1] to [0, 1]; 0.5 when empty."""
        if not items:
            return 0.5
        weights = [SCORE_WEIGHTS[self._sentiment_of(item)] for item in items]
        mean = sum(weights) / len(weights)
        return round((mean + 1) / 2, 4)

    def label_headlines(self, headlines: Iterable[HeadlineItem]) -> List[HeadlineItem]:
        labelled = []
        for item in headlines:
            labelled.append(item.model_copy(update={"sentiment": self.classify(_headline_text(item))}))
        return labelled

    def analyze(self, headlines: Iterable[HeadlineItem]) -> Tuple[List[HeadlineItem], NewsAnalysis]:
        """Classify headlines and build the deterministic news analysis."""
        labelled = self.label_headlines(headlines)
        score = self.aggregate(labelled)

        sentiment = label_for_score(score)
        decided = [item for item in labelled if item.sentiment != Sentiment.NEUTRAL]
        confidence = len(decided) / len(labelled) if labelled else 0.0
        short_term = abs(score - 0.5) * 2 * confidence

        analysis = NewsAnalysis(
            score=score,
            sentiment=sentiment,
            confidence=round(max(CONFIDENCE_FLOOR, confidence), 4),
            impact=NewsImpact(
                shortTerm=round(max(CONFIDENCE_FLOOR, short_term), 4),
                longTerm=round(max(CONFIDENCE_FLOOR, short_term / 2), 4),
            ),
        )
        logger.debug("Scored %d headlines: %s (%.2f)", len(labelled), sentiment.value, score)
        return labelled, analysis

    # --- Internal helpers ---

    def _count(self, text: str) -> Tuple[int, int]:
        tokens = _TOKEN_PATTERN.findall(text.lower())
        positive = negative = 0
        for index, token in enumerate(tokens):
            polarity = self._polarity(token)
            if polarity == 0:
                continue
            if self._is_modified(tokens, index):
                polarity = -polarity
            if polarity > 0:
                positive += 1
            else:
                negative += 1
        return positive, negative

    def _polarity(self, token: str) -> int:
        if token in self.exclusions:
            return 0
        if any(token.startswith(term) for term in self.positive_terms):
            return 1
        if any(token.startswith(term) for term in self.negative_terms):
            return -1
        return 0

    def _is_modified(self, tokens: List[str], index: int) -> bool:
        start = max(0, index - MODIFIER_WINDOW)
        for token in reversed(tokens[start:index]):
            if token in _CLAUSE_BREAKS:
                return False
            if token in self.modifiers:
                return True
        return False

    def _sentiment_of(self, item: Union[HeadlineItem, Sentiment, str]) -> Sentiment:
        if isinstance(item, HeadlineItem):
            if item.sentiment is not None:
                return item.sentiment
            return self.classify(_headline_text(item))
        return Sentiment(item)


def _headline_text(item: HeadlineItem) -> str:
    return item.title if not item.body else f"{item.title} {item.body}"


def label_for_score(score: Optional[float]) -> Sentiment:
    if score is None:
        return Sentiment.NEUTRAL
    if score > 0.6:
        return Sentiment.POSITIVE
    if score < 0.4:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL
