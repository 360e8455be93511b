# Budget alerting
from teamspend.alerts.base import AlertLevel, AlertEvent, AlertDecision, NotificationResult, Notifier
from teamspend.alerts.budget_threshold import BudgetAlertEngine, decide
from teamspend.alerts.notifiers import (
    LoggingNotifier,
    EmailNotifier,
    FallbackNotifier,
    build_notifier,
)

__all__ = [
    'AlertLevel',
    'AlertEvent',
    'AlertDecision',
    'NotificationResult',
    'Notifier',
    'BudgetAlertEngine',
    'decide',
    'LoggingNotifier',
    'EmailNotifier',
    'FallbackNotifier',
    'build_notifier',
]
