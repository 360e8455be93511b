"""Budget forecasting from recent daily spending."""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

import numpy as np

from teamspend.api.models import Expense, Team, calculate_utilization
from teamspend.utils.config import AlertThresholds


class TrendDirection(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"
    NO_DATA = "no_data"


class TrendStrength(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Confidence(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RecommendationType(Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"
    POSITIVE = "positive"


@dataclass
class Trend:
    """Direction and magnitude of the spending trend."""
    direction: TrendDirection
    strength: Optional[TrendStrength] = None
    percentage_change: float = 0.0


@dataclass
class Recommendation:
    type: RecommendationType
    message: str
    action: str

    def to_dict(self) -> dict:
        return {'type': self.type.value, 'message': self.message, 'action': self.action}


@dataclass
class ForecastResult:
    """Projected spending for a team over a future window."""
    team_id: str
    forecast_window_days: int
    current_utilization: int
    avg_daily_spend: float
    projected_spend: float
    projected_total: float
    projected_utilization: int
    trend: Trend
    confidence: Confidence
    is_over_budget_risk: bool = False
    will_exceed_warning: bool = False
    recommendations: list[Recommendation] = field(default_factory=list)

    @property
    def trend_direction(self) -> TrendDirection:
        return self.trend.direction

    @property
    def trend_strength(self) -> Optional[TrendStrength]:
        return self.trend.strength

    def to_dict(self) -> dict:
        return {
            'team_id': self.team_id,
            'forecast_window_days': self.forecast_window_days,
            'current_utilization': self.current_utilization,
            'avg_daily_spend': round(self.avg_daily_spend, 2),
            'projected_spend': round(self.projected_spend, 2),
            'projected_total': round(self.projected_total, 2),
            'projected_utilization': self.projected_utilization,
            'trend_direction': self.trend.direction.value,
            'trend_strength': self.trend.strength.value if self.trend.strength else None,
            'percentage_change': round(self.trend.percentage_change, 1),
            'confidence': self.confidence.value,
            'is_over_budget_risk': self.is_over_budget_risk,
            'will_exceed_warning': self.will_exceed_warning,
            'recommendations': [r.to_dict() for r in self.recommendations]
        }


class ForecastEngine:
    """
    Projects near-future utilization with a half-split trend.

    Daily totals are split into two halves; comparing the half averages
    gives direction (10% dead band) and strength (20% / 50% cut-offs).
    Projection is a flat extrapolation of the average daily spend.
    """

    MIN_TREND_DAYS = 3
    STABLE_BAND = 0.10
    MEDIUM_CHANGE_PCT = 20
    HIGH_CHANGE_PCT = 50
    LOW_CONFIDENCE_BELOW = 5
    HIGH_CONFIDENCE_ABOVE = 20
    HEALTHY_CURRENT_UTILIZATION = 50
    HEALTHY_PROJECTED_UTILIZATION = 70
    OVER_BUDGET_UTILIZATION = 100

    def __init__(self, thresholds: Optional[AlertThresholds] = None,
                 lookback_days: int = 30, forecast_window_days: int = 30):
        self.thresholds = thresholds or AlertThresholds()
        self.lookback_days = lookback_days
        self.forecast_window_days = forecast_window_days

    def recent_expenses(self, expenses: Iterable[Expense], today: date) -> list[Expense]:
        """Approved, active expenses dated within the lookback up to today, oldest first."""
        cutoff = today - timedelta(days=self.lookback_days)
        recent = [e for e in expenses if e.counts_toward_budget and cutoff <= e.date <= today]
        return sorted(recent, key=lambda e: e.date)

    @staticmethod
    def group_by_day(expenses: Iterable[Expense]) -> list[tuple[date, Decimal]]:
        """Total amount per calendar day, ordered by date."""
        totals: dict[date, Decimal] = defaultdict(Decimal)
        for expense in expenses:
            totals[expense.date] += expense.amount
        return sorted(totals.items())

    def calculate_trend(self, daily_totals: list[float]) -> Trend:
        """Compare the average of the first and second half of daily totals."""
        if len(daily_totals) < self.MIN_TREND_DAYS:
            return Trend(direction=TrendDirection.INSUFFICIENT_DATA)

        values = np.asarray(daily_totals, dtype=float)
        mid = len(values) // 2
        first_avg = float(values[:mid].mean())
        second_avg = float(values[mid:].mean())

        difference = second_avg - first_avg
        percentage_change = abs(difference) / max(first_avg, 1.0) * 100

        if abs(difference) <= first_avg * self.STABLE_BAND:
            return Trend(direction=TrendDirection.STABLE, strength=TrendStrength.LOW,
                         percentage_change=percentage_change)

        direction = TrendDirection.INCREASING if difference > 0 else TrendDirection.DECREASING
        if percentage_change > self.HIGH_CHANGE_PCT:
            strength = TrendStrength.HIGH
        elif percentage_change > self.MEDIUM_CHANGE_PCT:
            strength = TrendStrength.MEDIUM
        else:
            strength = TrendStrength.LOW

        return Trend(direction=direction, strength=strength, percentage_change=percentage_change)

    def confidence_for(self, expense_count: int) -> Confidence:
        if expense_count < self.LOW_CONFIDENCE_BELOW:
            return Confidence.LOW
        if expense_count > self.HIGH_CONFIDENCE_ABOVE:
            return Confidence.HIGH
        return Confidence.MEDIUM

    def recommendations(self, projected_utilization: int, trend: Trend,
                        current_utilization: int) -> list[Recommendation]:
        """Deterministic advice from projected utilization and trend."""
        recs = []

        if projected_utilization > self.thresholds.critical:
            recs.append(Recommendation(
                type=RecommendationType.CRITICAL,
                message="Projected to exceed budget. Immediate action required.",
                action="Review and defer non-essential expenses"
            ))
        elif projected_utilization >= self.thresholds.warning:
            recs.append(Recommendation(
                type=RecommendationType.WARNING,
                message="Approaching budget limit. Monitor spending closely.",
                action="Consider expense approval reviews"
            ))

        if trend.direction == TrendDirection.INCREASING and trend.strength != TrendStrength.LOW:
            recs.append(Recommendation(
                type=RecommendationType.INFO,
                message="Spending trend is increasing.",
                action="Analyze recent expense patterns"
            ))

        if (current_utilization < self.HEALTHY_CURRENT_UTILIZATION
                and projected_utilization < self.HEALTHY_PROJECTED_UTILIZATION):
            recs.append(Recommendation(
                type=RecommendationType.POSITIVE,
                message="Budget utilization is healthy.",
                action="Continue current spending patterns"
            ))

        return recs

    def forecast(self, team: Team, expenses: Iterable[Expense],
                 forecast_window_days: Optional[int] = None,
                 today: Optional[date] = None) -> ForecastResult:
        """Forecast a team's utilization at the end of the window."""
        window = self.forecast_window_days if forecast_window_days is None else forecast_window_days
        today = today or date.today()
        current_utilization = team.budget_utilization
        recent = self.recent_expenses(expenses, today)

        if not recent:
            return ForecastResult(
                team_id=team.id,
                forecast_window_days=window,
                current_utilization=current_utilization,
                avg_daily_spend=0.0,
                projected_spend=0.0,
                projected_total=float(team.total_spent),
                projected_utilization=current_utilization,
                trend=Trend(direction=TrendDirection.NO_DATA),
                confidence=Confidence.LOW,
            )

        daily = self.group_by_day(recent)
        total_recent = sum((amount for _, amount in daily), Decimal("0"))
        avg_daily = total_recent / max(1, len(daily))

        projected_spend = avg_daily * window
        projected_total = team.total_spent + projected_spend
        projected_utilization = calculate_utilization(projected_total, team.budget)

        trend = self.calculate_trend([float(amount) for _, amount in daily])

        return ForecastResult(
            team_id=team.id,
            forecast_window_days=window,
            current_utilization=current_utilization,
            avg_daily_spend=float(avg_daily),
            projected_spend=float(projected_spend),
            projected_total=float(projected_total),
            projected_utilization=projected_utilization,
            trend=trend,
            confidence=self.confidence_for(len(recent)),
            is_over_budget_risk=projected_utilization > self.OVER_BUDGET_UTILIZATION,
            will_exceed_warning=projected_utilization >= self.thresholds.warning,
            recommendations=self.recommendations(projected_utilization, trend, current_utilization),
        )
