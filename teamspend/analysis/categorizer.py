"""Expense category suggestion with a keyword fallback."""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel

from teamspend.api.models import CATEGORIES, ExpenseCategory
from teamspend.utils.timeouts import call_with_timeout

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    """External classifier capability (e.g. an LLM endpoint)."""

    def suggest(self, description: str, categories: Sequence[str]) -> Mapping[str, Any]:
        """Return a mapping with category, confidence and reasoning."""
        ...


class ClassifierResponse(BaseModel):
    """Shape the classifier must answer with."""
    category: str
    confidence: float
    reasoning: str = ""


@dataclass
class Suggestion:
    """Best-guess category for a description."""
    category: ExpenseCategory
    confidence: float
    reasoning: str
    source: str = "keywords"  # keywords | classifier
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            'category': self.category.value,
            'confidence': round(self.confidence, 3),
            'reasoning': self.reasoning,
            'source': self.source,
            'degraded': self.degraded
        }


# Declaration order breaks ties between equally scored categories.
CATEGORY_KEYWORDS: dict[ExpenseCategory, list[str]] = {
    ExpenseCategory.TRAVEL: ['flight', 'hotel', 'uber', 'taxi', 'gas', 'mileage', 'rental',
                             'airbnb', 'trip', 'travel'],
    ExpenseCategory.FOOD: ['restaurant', 'lunch', 'dinner', 'coffee', 'meal', 'catering',
                           'starbucks', 'food', 'eat'],
    ExpenseCategory.SUPPLIES: ['paper', 'pen', 'office', 'supplies', 'stationery', 'printer',
                               'ink', 'materials'],
    ExpenseCategory.SOFTWARE: ['subscription', 'license', 'saas', 'software', 'app', 'service',
                               'tool', 'platform'],
    ExpenseCategory.HARDWARE: ['computer', 'laptop', 'mouse', 'keyboard', 'monitor', 'device',
                               'equipment', 'hardware'],
    ExpenseCategory.TRAINING: ['training', 'course', 'conference', 'workshop', 'certification',
                               'learning', 'education'],
    ExpenseCategory.ENTERTAINMENT: ['entertainment', 'client', 'team building', 'event', 'party',
                                    'celebration'],
}


class CategorySuggester:
    """
    Two-tier category suggestion.

    1. If a classifier is configured, ask it (under a timeout) and
       normalize its answer onto the category enum.
    2. Otherwise, or if the classifier fails in any way, score keyword
       matches. This tier always produces an answer.
    """

    BASE_CONFIDENCE = 0.3
    PER_MATCH = 0.2
    MAX_KEYWORD_CONFIDENCE = 0.8
    NO_MATCH_CONFIDENCE = 0.1
    UNKNOWN_CATEGORY_PENALTY = 0.3
    MIN_CORRECTED_CONFIDENCE = 0.1

    def __init__(self, classifier: Optional[Classifier] = None, timeout: float = 10.0,
                 keywords: Optional[dict[ExpenseCategory, list[str]]] = None):
        self.classifier = classifier
        self.timeout = timeout
        self.keywords = keywords or CATEGORY_KEYWORDS

    def suggest(self, description: str) -> Suggestion:
        """Suggest a category; never raises for classifier problems."""
        if self.classifier is None:
            return self.keyword_suggestion(description)

        try:
            return self.classifier_suggestion(description)
        except Exception as e:
            # Any classifier failure degrades to keywords
            logger.warning(f"Classifier suggestion failed, using keyword fallback: {e}")
            suggestion = self.keyword_suggestion(description)
            suggestion.degraded = True
            return suggestion

    def classifier_suggestion(self, description: str) -> Suggestion:
        """Ask the classifier and correct its answer onto the enum."""
        raw = call_with_timeout(self.classifier.suggest, self.timeout, description, CATEGORIES)
        response = ClassifierResponse.model_validate(raw)

        confidence = response.confidence
        reasoning = response.reasoning
        category_name = response.category.strip().lower()

        if category_name not in CATEGORIES:
            category_name = ExpenseCategory.OTHER.value
            confidence = max(self.MIN_CORRECTED_CONFIDENCE,
                             confidence - self.UNKNOWN_CATEGORY_PENALTY)
            reasoning += ' (Category corrected to "other")'

        confidence = max(0.0, min(1.0, confidence))
        logger.info(f"Classifier suggestion for \"{description}\": {category_name} ({confidence:.2f})")

        return Suggestion(
            category=ExpenseCategory(category_name),
            confidence=confidence,
            reasoning=reasoning,
            source="classifier"
        )

    def keyword_suggestion(self, description: str) -> Suggestion:
        """Score keyword matches per category; the best score wins."""
        desc = description.lower()
        best = Suggestion(
            category=ExpenseCategory.OTHER,
            confidence=self.NO_MATCH_CONFIDENCE,
            reasoning="No clear keywords found"
        )

        for category, keywords in self.keywords.items():
            matches = [kw for kw in keywords if kw in desc]
            if not matches:
                continue
            confidence = min(self.MAX_KEYWORD_CONFIDENCE,
                             self.BASE_CONFIDENCE + len(matches) * self.PER_MATCH)
            if confidence > best.confidence:
                best = Suggestion(
                    category=category,
                    confidence=confidence,
                    reasoning=f"Matched keywords: {', '.join(matches)}"
                )

        logger.debug(f"Keyword suggestion for \"{description}\": {best.category.value}")
        return best
