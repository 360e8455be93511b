# Service layer
from teamspend.services.base import ServiceResult
from teamspend.services.budget_service import BudgetService
from teamspend.services.expense_service import ExpenseService, build_suggester, build_detector

__all__ = [
    'ServiceResult',
    'BudgetService',
    'ExpenseService',
    'build_suggester',
    'build_detector',
]
