"""Duplicate and outlier detection for expense records."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from itertools import combinations
from typing import Iterable, Optional

import numpy as np
from rapidfuzz.distance import Levenshtein

from teamspend.api.models import Expense
from teamspend.utils.formatters import format_currency


class FindingType(Enum):
    DUPLICATE = "duplicate"
    OUTLIER = "outlier"


@dataclass
class SuspiciousFinding:
    """An expense (or pair) that looks like a duplicate or an outlier."""
    type: FindingType
    expense_ids: list[str]
    reason: str
    confidence: float

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'expense_ids': self.expense_ids,
            'reason': self.reason,
            'confidence': round(self.confidence, 3)
        }


@dataclass
class AnomalyReport:
    """Findings for one team over a lookback window."""
    team_id: str
    lookback_days: int
    total_checked: int
    suspicious_count: int
    findings: list[SuspiciousFinding] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            'team_id': self.team_id,
            'lookback_days': self.lookback_days,
            'total_checked': self.total_checked,
            'suspicious_count': self.suspicious_count,
            'findings': [f.to_dict() for f in self.findings],
            'generated_at': self.generated_at.isoformat()
        }


@dataclass
class SimilarExpense:
    expense_id: str
    similarity: float


@dataclass
class DuplicateCheck:
    """Result of checking a single expense against its neighbours."""
    is_duplicate: bool
    similar_expenses: list[SimilarExpense] = field(default_factory=list)


def text_similarity(a: str, b: str) -> float:
    """
    1 minus the normalized edit distance of two descriptions.

    Comparison is case-insensitive and ignores surrounding whitespace.
    Two empty strings are identical; an empty string shares nothing with
    a non-empty one.
    """
    a = a.lower().strip()
    b = b.lower().strip()
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 - Levenshtein.distance(a, b) / max(len(a), len(b))


class AnomalyDetector:
    """
    Flags likely duplicate entries and unusually large amounts.

    Duplicates: same amount (within a cent), dated within a week, and
    descriptions more than 70% similar. Every pair in the window is
    compared, so cost grows quadratically with window size.

    Outliers: classic boxplot rule, amount > Q3 + 1.5 * IQR, using
    index-based quartiles over the sorted amounts. Needs more than five
    expenses in the window.
    """

    DEFAULT_CONFIG = {
        "lookback_days": 30,
        "amount_tolerance": Decimal("0.01"),
        "duplicate_window_days": 7,
        "similarity_threshold": 0.7,
        "min_outlier_sample": 5,
        "iqr_multiplier": 1.5,
        "outlier_confidence": 0.7,
        "max_findings": 10,
        # Single-expense check
        "check_amount_tolerance_pct": Decimal("0.05"),
        "check_similarity_threshold": 0.8,
        "check_max_candidates": 5,
    }

    def __init__(self, config: Optional[dict] = None):
        self.config = {**self.DEFAULT_CONFIG, **(config or {})}

    def window(self, expenses: Iterable[Expense], today: date,
               lookback_days: Optional[int] = None) -> list[Expense]:
        """Active expenses of any status dated within the lookback up to today, newest first."""
        days = lookback_days if lookback_days is not None else self.config["lookback_days"]
        cutoff = today - timedelta(days=days)
        recent = [e for e in expenses if e.is_active and cutoff <= e.date <= today]
        return sorted(recent, key=lambda e: e.date, reverse=True)

    def find_duplicates(self, expenses: list[Expense]) -> list[SuspiciousFinding]:
        findings = []
        max_days = self.config["duplicate_window_days"]

        for exp1, exp2 in combinations(expenses, 2):
            if abs(exp1.amount - exp2.amount) >= self.config["amount_tolerance"]:
                continue

            days_apart = abs((exp1.date - exp2.date).days)
            if days_apart > max_days:
                continue

            similarity = text_similarity(exp1.description, exp2.description)
            if similarity > self.config["similarity_threshold"]:
                findings.append(SuspiciousFinding(
                    type=FindingType.DUPLICATE,
                    expense_ids=[exp1.id, exp2.id],
                    reason=(
                        f"Similar amount ({format_currency(exp1.amount)}) and description "
                        f"within {days_apart} days"
                    ),
                    confidence=similarity
                ))

        return findings

    def upper_bound(self, amounts: list[Decimal]) -> float:
        """Q3 + k * IQR with index-based quartiles (no interpolation)."""
        values = np.sort(np.array([float(a) for a in amounts]))
        n = len(values)
        q1 = values[int(n * 0.25)]
        q3 = values[int(n * 0.75)]
        return float(q3 + self.config["iqr_multiplier"] * (q3 - q1))

    def find_outliers(self, expenses: list[Expense]) -> list[SuspiciousFinding]:
        if len(expenses) <= self.config["min_outlier_sample"]:
            return []

        threshold = self.upper_bound([e.amount for e in expenses])
        return [
            SuspiciousFinding(
                type=FindingType.OUTLIER,
                expense_ids=[e.id],
                reason=(
                    f"Amount ({format_currency(e.amount)}) is significantly higher "
                    f"than typical expenses"
                ),
                confidence=self.config["outlier_confidence"]
            )
            for e in expenses
            if float(e.amount) > threshold
        ]

    def detect(self, team_id: str, expenses: Iterable[Expense],
               today: Optional[date] = None,
               lookback_days: Optional[int] = None) -> AnomalyReport:
        """Run duplicate and outlier detection over the lookback window."""
        today = today or date.today()
        days = lookback_days if lookback_days is not None else self.config["lookback_days"]
        recent = self.window(expenses, today, days)

        findings = self.find_duplicates(recent) + self.find_outliers(recent)

        return AnomalyReport(
            team_id=team_id,
            lookback_days=days,
            total_checked=len(recent),
            suspicious_count=len(findings),
            findings=findings[:self.config["max_findings"]]
        )

    def check_expense(self, expense: Expense, candidates: Iterable[Expense]) -> DuplicateCheck:
        """
        Check one expense against other expenses of the same team.

        Looser on amount (within 5%) but stricter on text (more than 80%
        similar) than the window scan, for use when an expense is submitted.
        """
        tolerance = expense.amount * self.config["check_amount_tolerance_pct"]
        max_days = self.config["duplicate_window_days"]

        nearby = [
            c for c in candidates
            if c.id != expense.id
            and c.team_id == expense.team_id
            and c.is_active
            and abs(c.amount - expense.amount) <= tolerance
            and abs((c.date - expense.date).days) <= max_days
        ][:self.config["check_max_candidates"]]

        similar = []
        for candidate in nearby:
            similarity = text_similarity(expense.description, candidate.description)
            if similarity > self.config["check_similarity_threshold"]:
                similar.append(SimilarExpense(expense_id=candidate.id, similarity=similarity))

        return DuplicateCheck(is_duplicate=bool(similar), similar_expenses=similar)
