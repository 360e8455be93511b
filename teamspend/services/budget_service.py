"""Budget checks, forecasts and summaries over the team store."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from teamspend.alerts.base import AlertEvent, Notifier, NotificationResult
from teamspend.alerts.budget_threshold import BudgetAlertEngine
from teamspend.alerts.notifiers import LoggingNotifier
from teamspend.analysis.forecast import ForecastEngine
from teamspend.api.models import Team, budget_status, calculate_utilization
from teamspend.cache.database import Database
from teamspend.services.base import ServiceResult
from teamspend.utils.config import AppConfig

logger = logging.getLogger(__name__)


class BudgetService:
    """
    Runs the read-decide-write cycle for budget alerts.

    Alert flags are written with a compare-and-set on the team's
    alert_version. If another evaluation wrote first, the team is re-read
    and the decision is made again, so concurrent checks for one team
    cannot both send the same alert. Notifications go out only after the
    flags are stored; a failed delivery does not roll them back.
    """

    MAX_FLAG_RETRIES = 5
    STATUSES = ('all', 'good', 'warning', 'critical', 'over_budget')

    def __init__(self, db: Database, notifier: Optional[Notifier] = None,
                 config: Optional[AppConfig] = None):
        self.db = db
        self.config = config or AppConfig(db_path=db.db_path)
        self.thresholds = self.config.alerts
        self.notifier = notifier or LoggingNotifier()
        self.engine = BudgetAlertEngine(self.thresholds)
        self.forecaster = ForecastEngine(
            self.thresholds,
            lookback_days=self.config.analysis.lookback_days,
            forecast_window_days=self.config.analysis.forecast_window_days,
        )

    @staticmethod
    def _team_error(team: Optional[Team], team_id: str) -> Optional[str]:
        """Describe why a team can't be evaluated, or None if it can."""
        if team is None or not team.is_active:
            return f"Team not found: {team_id}"
        if team.budget <= 0:
            return f"Team {team_id} has no positive budget"
        return None

    def team_summary(self, team: Team) -> dict:
        return {
            'id': team.id,
            'name': team.name,
            'budget': float(team.budget),
            'total_spent': float(team.total_spent),
            'remaining_budget': float(team.remaining_budget),
            'budget_utilization': team.budget_utilization,
            'budget_status': budget_status(team.budget_utilization, self.thresholds.warning).value,
            'alert_flags': {
                'warning': team.alert_flags.warning,
                'critical': team.alert_flags.critical
            }
        }

    def _deliver(self, event: AlertEvent, team: Team) -> dict:
        """Send one alert and record the outcome. Never raises."""
        try:
            result = self.notifier.send_alert(event, team)
        except Exception as e:
            result = NotificationResult(success=False, provider=self.notifier.provider, error=str(e))

        if result.success:
            logger.info(f"{event.level.value} alert delivered for team {team.id} via {result.provider}")
        else:
            logger.error(f"Failed to deliver {event.level.value} alert for team {team.id}: {result.error}")

        try:
            self.db.save_alert_event(
                team_id=team.id,
                level=event.level.value,
                utilization=event.utilization,
                threshold=event.threshold,
                created_at=event.timestamp,
                delivered=result.success,
                provider=result.provider,
                error=result.error,
                metadata=result.metadata
            )
        except Exception as e:
            logger.error(f"Failed to record alert history for team {team.id}: {e}")

        return {**event.to_dict(), 'delivery': result.to_dict()}

    def check_budget_alerts(self, team_id: str) -> ServiceResult:
        """Recompute a team's spend and fire at most one threshold alert."""
        try:
            team = self.db.get_team(team_id)
            error = self._team_error(team, team_id)
            if error:
                return ServiceResult.fail(error, team_id=team_id)

            self.db.update_total_spent(team_id)

            for attempt in range(self.MAX_FLAG_RETRIES):
                team = self.db.get_team(team_id)
                decision = self.engine.evaluate(team)

                if decision.new_flags == team.alert_flags:
                    break
                if self.db.persist_alert_flags(team_id, decision.new_flags, team.alert_version):
                    team = team.model_copy(update={'alert_flags': decision.new_flags})
                    break
                logger.info(f"Alert flags for team {team_id} changed concurrently, re-evaluating "
                            f"(attempt {attempt + 1})")
            else:
                return ServiceResult.fail(
                    f"Could not update alert state for team {team_id} after "
                    f"{self.MAX_FLAG_RETRIES} attempts",
                    team_id=team_id
                )

            alerts_sent = [self._deliver(event, team) for event in decision.events]
            return ServiceResult.ok(team=self.team_summary(team), alerts_sent=alerts_sent)

        except Exception as e:
            logger.error(f"Error checking budget alerts for team {team_id}: {e}")
            return ServiceResult.fail(str(e), team_id=team_id)

    def check_all_teams(self) -> ServiceResult:
        """Check every active team; one failing team doesn't stop the rest."""
        try:
            teams = self.db.get_teams(active_only=True)
        except Exception as e:
            logger.error(f"Error loading teams for budget check: {e}")
            return ServiceResult.fail(str(e))

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            results = list(pool.map(self.check_budget_alerts, [t.id for t in teams]))

        total_alerts = sum(len(r.data.get('alerts_sent', [])) for r in results)
        failures = sum(1 for r in results if not r.success)
        logger.info(f"Checked {len(teams)} teams: {total_alerts} alerts, {failures} failures")

        return ServiceResult.ok(
            teams_checked=len(teams),
            total_alerts=total_alerts,
            failures=failures,
            results=[r.to_dict() for r in results]
        )

    def get_teams_by_budget_status(self, status: str = 'all') -> ServiceResult:
        """Active teams filtered by utilization band."""
        if status not in self.STATUSES:
            return ServiceResult.fail(f"Unknown budget status: {status}")

        warning, critical = self.thresholds.warning, self.thresholds.critical
        filters = {
            'all': lambda u: True,
            'good': lambda u: u < warning,
            'warning': lambda u: warning <= u < critical,
            'critical': lambda u: u >= critical,
            'over_budget': lambda u: u >= 100,
        }

        try:
            teams = [t for t in self.db.get_teams() if filters[status](t.budget_utilization)]
        except Exception as e:
            logger.error(f"Error getting teams by budget status: {e}")
            return ServiceResult.fail(str(e))

        return ServiceResult.ok(
            status=status,
            count=len(teams),
            teams=[self.team_summary(t) for t in teams]
        )

    def calculate_budget_forecast(self, team_id: str, forecast_window_days: Optional[int] = None,
                                  today: Optional[date] = None) -> ServiceResult:
        """Project a team's utilization over the forecast window."""
        today = today or date.today()
        try:
            team = self.db.get_team(team_id)
            error = self._team_error(team, team_id)
            if error:
                return ServiceResult.fail(error, team_id=team_id)

            since = today - timedelta(days=self.forecaster.lookback_days)
            expenses = self.db.get_approved_expenses(team_id, since=since)
            forecast = self.forecaster.forecast(team, expenses, forecast_window_days, today=today)
        except Exception as e:
            logger.error(f"Error calculating budget forecast for team {team_id}: {e}")
            return ServiceResult.fail(str(e), team_id=team_id)

        return ServiceResult.ok(team=self.team_summary(team), forecast=forecast.to_dict())

    def get_budget_summary(self) -> ServiceResult:
        """Totals and status counts across all active teams."""
        try:
            teams = self.db.get_teams()
        except Exception as e:
            logger.error(f"Error getting budget summary: {e}")
            return ServiceResult.fail(str(e))

        status_counts = {'good': 0, 'warning': 0, 'critical': 0, 'over_budget': 0}
        total_budget = Decimal("0")
        total_spent = Decimal("0")

        for team in teams:
            total_budget += team.budget
            total_spent += team.total_spent

            # Buckets are exclusive and over_budget is checked first, so 'critical'
            # only counts teams when the critical threshold is below 100.
            utilization = team.budget_utilization
            if utilization >= 100:
                status_counts['over_budget'] += 1
            elif utilization >= self.thresholds.critical:
                status_counts['critical'] += 1
            elif utilization >= self.thresholds.warning:
                status_counts['warning'] += 1
            else:
                status_counts['good'] += 1

        top_spending = sorted(teams, key=lambda t: t.total_spent, reverse=True)[:5]

        return ServiceResult.ok(
            total_teams=len(teams),
            total_budget=float(total_budget),
            total_spent=float(total_spent),
            avg_utilization=calculate_utilization(total_spent, total_budget),
            status_counts=status_counts,
            top_spending_teams=[self.team_summary(t) for t in top_spending]
        )
