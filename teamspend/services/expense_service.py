"""Expense review, category suggestion and anomaly checks."""

import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from teamspend.analysis.anomalies import AnomalyDetector
from teamspend.analysis.categorizer import CategorySuggester
from teamspend.api.classifier_client import OllamaClassifier
from teamspend.api.models import ExpenseStatus
from teamspend.cache.database import Database
from teamspend.services.base import ServiceResult
from teamspend.services.budget_service import BudgetService
from teamspend.utils.config import AnalysisConfig, ClassifierConfig
from teamspend.utils.formatters import period_start

logger = logging.getLogger(__name__)


def build_suggester(config: ClassifierConfig) -> CategorySuggester:
    """Keyword-only unless an external classifier is enabled."""
    if not config.enabled:
        logger.info("Classifier not configured - category suggestions will use keywords")
        return CategorySuggester(timeout=config.timeout_seconds)

    classifier = OllamaClassifier(
        host=config.host,
        model_name=config.model,
        timeout=config.timeout_seconds
    )
    return CategorySuggester(classifier=classifier, timeout=config.timeout_seconds)


def build_detector(config: AnalysisConfig) -> AnomalyDetector:
    return AnomalyDetector({
        "lookback_days": config.lookback_days,
        "duplicate_window_days": config.duplicate_window_days,
        "similarity_threshold": config.similarity_threshold,
        "outlier_confidence": config.outlier_confidence,
        "max_findings": config.max_findings,
    })


class ExpenseService:
    """Operations on individual expenses and per-team expense analysis."""

    TREND_BAND = Decimal("0.2")

    def __init__(self, db: Database, budget_service: BudgetService,
                 suggester: Optional[CategorySuggester] = None,
                 detector: Optional[AnomalyDetector] = None):
        self.db = db
        self.budget_service = budget_service
        self.suggester = suggester or CategorySuggester()
        self.detector = detector or AnomalyDetector()

    def approve_expense(self, expense_id: str, approver: str) -> ServiceResult:
        """Approve an expense, then re-check the team's budget alerts."""
        expense = self.db.get_expense(expense_id)
        if expense is None:
            return ServiceResult.fail(f"Expense not found: {expense_id}")
        if expense.status == ExpenseStatus.APPROVED:
            return ServiceResult.fail(f"Expense {expense_id} is already approved")

        self.db.set_expense_status(expense_id, ExpenseStatus.APPROVED, reviewed_by=approver)
        logger.info(f"Expense {expense_id} approved by {approver}")

        budget_check = self.budget_service.check_budget_alerts(expense.team_id)
        return ServiceResult.ok(
            expense_id=expense_id,
            status=ExpenseStatus.APPROVED.value,
            budget_check=budget_check.to_dict()
        )

    def reject_expense(self, expense_id: str, reviewer: str, reason: str) -> ServiceResult:
        """Reject an expense; re-check the budget if it previously counted."""
        expense = self.db.get_expense(expense_id)
        if expense is None:
            return ServiceResult.fail(f"Expense not found: {expense_id}")

        self.db.set_expense_status(expense_id, ExpenseStatus.REJECTED,
                                   reviewed_by=reviewer, rejection_reason=reason)
        logger.info(f"Expense {expense_id} rejected by {reviewer}")

        data = {'expense_id': expense_id, 'status': ExpenseStatus.REJECTED.value}
        if expense.status == ExpenseStatus.APPROVED:
            data['budget_check'] = self.budget_service.check_budget_alerts(expense.team_id).to_dict()
        return ServiceResult.ok(**data)

    def suggest_category(self, description: str) -> ServiceResult:
        """Suggest a category for free text."""
        if not description or not description.strip():
            return ServiceResult.fail("Description is required")

        suggestion = self.suggester.suggest(description)
        return ServiceResult.ok(suggestion=suggestion.to_dict())

    def suggest_category_for_expense(self, expense_id: str) -> ServiceResult:
        """Suggest a category for a stored expense and keep the suggestion."""
        expense = self.db.get_expense(expense_id)
        if expense is None:
            return ServiceResult.fail(f"Expense not found: {expense_id}")

        suggestion = self.suggester.suggest(expense.description)
        try:
            self.db.save_category_suggestion(expense_id, suggestion.category.value,
                                             suggestion.confidence)
        except Exception as e:
            logger.error(f"Failed to store category suggestion for expense {expense_id}: {e}")

        return ServiceResult.ok(expense_id=expense_id, suggestion=suggestion.to_dict())

    def detect_suspicious_expenses(self, team_id: str, lookback_days: Optional[int] = None,
                                   today: Optional[date] = None) -> ServiceResult:
        """Duplicate and outlier findings for a team's recent expenses."""
        today = today or date.today()
        days = lookback_days if lookback_days is not None else self.detector.config["lookback_days"]

        try:
            team = self.db.get_team(team_id)
            if team is None or not team.is_active:
                return ServiceResult.fail(f"Team not found: {team_id}", team_id=team_id)

            expenses = self.db.get_active_expenses(team_id, since=today - timedelta(days=days))
            report = self.detector.detect(team_id, expenses, today=today, lookback_days=days)
        except Exception as e:
            logger.error(f"Error detecting suspicious expenses for team {team_id}: {e}")
            return ServiceResult.fail(str(e), team_id=team_id, suspicious_count=0, findings=[])

        if report.suspicious_count:
            logger.info(f"Team {team_id}: {report.suspicious_count} suspicious expense finding(s)")
        return ServiceResult.ok(**report.to_dict())

    def check_for_duplicates(self, expense_id: str) -> ServiceResult:
        """Compare one expense with same-team expenses from the surrounding week."""
        expense = self.db.get_expense(expense_id)
        if expense is None:
            return ServiceResult.fail(f"Expense not found: {expense_id}")

        window = timedelta(days=self.detector.config["duplicate_window_days"])
        candidates = [
            c for c in self.db.get_active_expenses(expense.team_id, since=expense.date - window)
            if c.date <= expense.date + window
        ]
        check = self.detector.check_expense(expense, candidates)

        return ServiceResult.ok(
            expense_id=expense_id,
            is_duplicate=check.is_duplicate,
            similar_expenses=[
                {'expense_id': s.expense_id, 'similarity': round(s.similarity, 3)}
                for s in check.similar_expenses
            ]
        )

    def get_spending_summary(self, team_id: str, period: str = 'month',
                             today: Optional[date] = None) -> ServiceResult:
        """Totals, category breakdown and a coarse trend for a reporting period."""
        team = self.db.get_team(team_id)
        if team is None or not team.is_active:
            return ServiceResult.fail(f"Team not found: {team_id}", team_id=team_id)

        start = period_start(period, today)
        expenses = self.db.get_approved_expenses(team_id, since=start)

        total = sum((e.amount for e in expenses), Decimal("0"))
        breakdown: dict[str, dict] = defaultdict(lambda: {'amount': Decimal("0"), 'count': 0})
        for expense in expenses:
            key = expense.category.value if expense.category else 'uncategorized'
            breakdown[key]['amount'] += expense.amount
            breakdown[key]['count'] += 1

        categories = sorted(
            ({'category': k, 'amount': float(v['amount']), 'count': v['count']}
             for k, v in breakdown.items()),
            key=lambda c: c['amount'],
            reverse=True
        )

        return ServiceResult.ok(
            team_id=team_id,
            period=period,
            period_start=start.isoformat(),
            total_expenses=len(expenses),
            total_amount=float(total),
            avg_amount=round(float(total / len(expenses)), 2) if expenses else 0.0,
            budget=float(team.budget),
            budget_utilization=team.budget_utilization,
            category_breakdown=categories,
            trend=self._expense_trend([e.amount for e in expenses])
        )

    def _expense_trend(self, amounts: list[Decimal]) -> str:
        """Compare average expense size in the first and second half of the period."""
        if not amounts:
            return 'no_data'
        if len(amounts) < 2:
            return 'insufficient_data'

        mid = len(amounts) // 2
        first_avg = sum(amounts[:mid], Decimal("0")) / mid
        second_avg = sum(amounts[mid:], Decimal("0")) / (len(amounts) - mid)

        if second_avg > first_avg * (1 + self.TREND_BAND):
            return 'increasing'
        if second_avg < first_avg * (1 - self.TREND_BAND):
            return 'decreasing'
        return 'stable'
