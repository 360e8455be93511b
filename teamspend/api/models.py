"""Pydantic models for team and expense data."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from teamspend.utils.formatters import round_half_up


class ExpenseCategory(str, Enum):
    """Fixed set of expense categories, in declaration order."""
    TRAVEL = "travel"
    FOOD = "food"
    SUPPLIES = "supplies"
    SOFTWARE = "software"
    HARDWARE = "hardware"
    TRAINING = "training"
    ENTERTAINMENT = "entertainment"
    OTHER = "other"


CATEGORIES: list[str] = [c.value for c in ExpenseCategory]


class ExpenseStatus(str, Enum):
    """Expense approval status."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BudgetStatus(str, Enum):
    """Coarse budget health bands."""
    GOOD = "good"
    MODERATE = "moderate"
    WARNING = "warning"
    OVER_BUDGET = "over_budget"


MODERATE_UTILIZATION = 60
OVER_BUDGET_UTILIZATION = 100


def calculate_utilization(total_spent: Decimal, budget: Decimal) -> int:
    """Percentage of budget consumed, rounded; 0 when there is no budget."""
    if budget <= 0:
        return 0
    return round_half_up(Decimal(total_spent) / Decimal(budget) * 100)


def budget_status(utilization: int, warning_threshold: int = 80) -> BudgetStatus:
    """Map a utilization percentage to a budget status band."""
    if utilization >= OVER_BUDGET_UTILIZATION:
        return BudgetStatus.OVER_BUDGET
    if utilization >= warning_threshold:
        return BudgetStatus.WARNING
    if utilization >= MODERATE_UTILIZATION:
        return BudgetStatus.MODERATE
    return BudgetStatus.GOOD


class AlertFlags(BaseModel):
    """Persisted hysteresis state: which alert levels have already fired."""
    model_config = ConfigDict(frozen=True)

    warning: bool = False
    critical: bool = False


class TeamMember(BaseModel):
    """Team member who may receive budget alerts."""
    id: Optional[int] = None
    name: str
    email: str
    role: str = "member"  # manager | member
    is_active: bool = True

    @property
    def is_manager(self) -> bool:
        return self.role == "manager"


class Team(BaseModel):
    """Team with a budget and its persisted alert state."""
    id: str
    name: str
    budget: Decimal
    total_spent: Decimal = Decimal("0")
    alert_flags: AlertFlags = Field(default_factory=AlertFlags)
    alert_version: int = 0
    members: list[TeamMember] = Field(default_factory=list)
    is_active: bool = True

    @property
    def budget_utilization(self) -> int:
        return calculate_utilization(self.total_spent, self.budget)

    @property
    def remaining_budget(self) -> Decimal:
        return max(Decimal("0"), self.budget - self.total_spent)

    @property
    def budget_status(self) -> BudgetStatus:
        return budget_status(self.budget_utilization)


class Expense(BaseModel):
    """Expense record submitted by a team member."""
    id: str
    team_id: str
    amount: Decimal = Field(gt=0)
    description: str
    category: Optional[ExpenseCategory] = None
    date: date
    status: ExpenseStatus = ExpenseStatus.PENDING
    is_active: bool = True
    submitted_by: Optional[str] = None

    @property
    def counts_toward_budget(self) -> bool:
        """Only approved, active expenses feed totals and forecasts."""
        return self.is_active and self.status == ExpenseStatus.APPROVED
