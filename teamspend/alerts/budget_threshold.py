"""Budget threshold alerting with hysteresis."""

from datetime import datetime
from typing import Iterable, Optional

from teamspend.alerts.base import AlertDecision, AlertEvent, AlertLevel
from teamspend.api.models import AlertFlags, Team
from teamspend.utils.config import AlertThresholds


def decide(utilization: int, thresholds: AlertThresholds, current_flags: AlertFlags,
           team_id: str = "", now: Optional[datetime] = None) -> AlertDecision:
    """
    Decide whether a budget alert fires and compute the next flag state.

    States are keyed by the flags: Normal (neither), Warning, Critical.
    Critical takes priority, so one evaluation emits at most one event.
    Once utilization drops below the warning threshold both flags reset
    together, and the next crossing alerts again.

    A critical alert also sets the warning flag, so a team held above the
    critical threshold gets no later warning.
    """
    flags = current_flags
    events: list[AlertEvent] = []
    extra = {"timestamp": now} if now is not None else {}

    if utilization >= thresholds.critical and not current_flags.critical:
        events.append(AlertEvent(
            team_id=team_id,
            level=AlertLevel.CRITICAL,
            utilization=utilization,
            threshold=thresholds.critical,
            **extra
        ))
        flags = AlertFlags(warning=True, critical=True)
    elif utilization >= thresholds.warning and not current_flags.warning:
        events.append(AlertEvent(
            team_id=team_id,
            level=AlertLevel.WARNING,
            utilization=utilization,
            threshold=thresholds.warning,
            **extra
        ))
        flags = flags.model_copy(update={"warning": True})

    if utilization < thresholds.warning:
        flags = AlertFlags()

    return AlertDecision(new_flags=flags, events=events)


class BudgetAlertEngine:
    """
    Applies the threshold state machine to team snapshots.

    The engine holds no state of its own; callers persist the returned
    flags and deliver the returned events.
    """

    def __init__(self, thresholds: Optional[AlertThresholds] = None):
        self.thresholds = thresholds or AlertThresholds()

    def decide(self, utilization: int, current_flags: AlertFlags,
               team_id: str = "") -> AlertDecision:
        return decide(utilization, self.thresholds, current_flags, team_id=team_id)

    def evaluate(self, team: Team) -> AlertDecision:
        """Evaluate one team using its current utilization and flags."""
        return self.decide(team.budget_utilization, team.alert_flags, team_id=team.id)

    def evaluate_many(self, teams: Iterable[Team]) -> dict[str, AlertDecision]:
        """Evaluate teams independently; there are no cross-team rules."""
        return {team.id: self.evaluate(team) for team in teams}
