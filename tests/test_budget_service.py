"""Tests for the budget service."""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from teamspend.api.models import AlertFlags
from teamspend.cache.database import Database
from teamspend.services.budget_service import BudgetService
from teamspend.utils.config import AlertThresholds, AppConfig


class RacingDatabase(Database):
    """Lets another writer update the flags just before our first write."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.raced = False

    def persist_alert_flags(self, team_id, flags, expected_version):
        if not self.raced:
            self.raced = True
            super().persist_alert_flags(team_id, flags, expected_version)
        return super().persist_alert_flags(team_id, flags, expected_version)


class ConflictingDatabase(Database):
    """Every flag write loses the race."""

    def persist_alert_flags(self, team_id, flags, expected_version):
        return False


@pytest.fixture
def service(temp_db, notifier):
    return BudgetService(temp_db, notifier=notifier)


def spend(db, make_expense, *amounts, team_id="team-001"):
    for amount in amounts:
        db.upsert_expense(make_expense(amount, team_id=team_id))


class TestCheckBudgetAlerts:
    """Tests for the read-decide-write alert cycle."""

    def test_warning_sent_once(self, service, temp_db, sample_team_id, make_expense, notifier):
        """Test that crossing warning notifies once and persists the flag."""
        spend(temp_db, make_expense, "850")

        result = service.check_budget_alerts(sample_team_id)

        assert result.success
        assert [a['level'] for a in result.data['alerts_sent']] == ["warning"]
        assert result.data['team']['budget_utilization'] == 85
        assert len(notifier.sent) == 1

        team = temp_db.get_team(sample_team_id)
        assert team.alert_flags == AlertFlags(warning=True, critical=False)
        assert team.total_spent == Decimal("850")

        again = service.check_budget_alerts(sample_team_id)
        assert again.data['alerts_sent'] == []
        assert len(notifier.sent) == 1

    def test_escalation_to_critical(self, service, temp_db, sample_team_id, make_expense, notifier):
        spend(temp_db, make_expense, "850")
        service.check_budget_alerts(sample_team_id)

        spend(temp_db, make_expense, "200")
        result = service.check_budget_alerts(sample_team_id)

        assert [a['level'] for a in result.data['alerts_sent']] == ["critical"]
        assert temp_db.get_team(sample_team_id).alert_flags == AlertFlags(warning=True, critical=True)

    def test_history_recorded(self, service, temp_db, sample_team_id, make_expense):
        spend(temp_db, make_expense, "1000")
        service.check_budget_alerts(sample_team_id)

        history = temp_db.get_alert_history(sample_team_id)
        assert len(history) == 1
        assert history[0]['level'] == "critical"
        assert history[0]['utilization'] == 100
        assert history[0]['delivered'] == 1
        assert history[0]['provider'] == "recording"

    @pytest.mark.parametrize("kwargs", [{'succeed': False}, {'raise_error': True}])
    def test_delivery_failure_keeps_flags(self, temp_db, sample_team_id, make_expense,
                                          make_notifier, kwargs):
        """Test that a failed notification doesn't roll back the alert state."""
        service = BudgetService(temp_db, notifier=make_notifier(**kwargs))
        spend(temp_db, make_expense, "900")

        result = service.check_budget_alerts(sample_team_id)

        assert result.success
        delivery = result.data['alerts_sent'][0]['delivery']
        assert delivery['success'] is False
        assert temp_db.get_team(sample_team_id).alert_flags.warning is True
        assert temp_db.get_alert_history(sample_team_id)[0]['delivered'] == 0

    def test_missing_team(self, service):
        result = service.check_budget_alerts("nope")
        assert not result.success
        assert "not found" in result.message

    def test_zero_budget(self, service, temp_db):
        temp_db.upsert_team("team-zero", "Zero", Decimal("0"))
        result = service.check_budget_alerts("team-zero")
        assert not result.success

    def test_inactive_team(self, service, temp_db):
        temp_db.upsert_team("team-old", "Old", Decimal("100"), is_active=False)
        assert not service.check_budget_alerts("team-old").success


class TestConcurrency:
    """Tests for concurrent alert evaluation."""

    def test_lost_race_reevaluates(self, tmp_path, make_expense, notifier):
        """Test that losing the write race re-reads and doesn't alert twice."""
        db = RacingDatabase(tmp_path / "race.db")
        db.upsert_team("team-001", "Platform", Decimal("1000"))
        spend(db, make_expense, "850")

        result = BudgetService(db, notifier=notifier).check_budget_alerts("team-001")

        assert result.success
        assert result.data['alerts_sent'] == []
        assert notifier.sent == []
        team = db.get_team("team-001")
        assert team.alert_flags.warning is True
        assert team.alert_version == 1

    def test_retries_exhausted(self, tmp_path, make_expense, notifier):
        db = ConflictingDatabase(tmp_path / "conflict.db")
        db.upsert_team("team-001", "Platform", Decimal("1000"))
        spend(db, make_expense, "850")

        result = BudgetService(db, notifier=notifier).check_budget_alerts("team-001")

        assert not result.success
        assert "after 5 attempts" in result.message
        assert notifier.sent == []

    def test_parallel_checks_alert_once(self, service, temp_db, sample_team_id, make_expense, notifier):
        """Test that simultaneous checks of one team send a single alert."""
        spend(temp_db, make_expense, "950")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: service.check_budget_alerts(sample_team_id), range(8)))

        assert all(r.success for r in results)
        assert sum(len(r.data['alerts_sent']) for r in results) == 1
        assert len(notifier.sent) == 1


class TestCheckAllTeams:
    """Tests for checking every team."""

    def test_checks_each_team(self, service, temp_db, sample_team_id, make_expense, notifier):
        temp_db.upsert_team("team-002", "Data", Decimal("500"))
        spend(temp_db, make_expense, "900")
        spend(temp_db, make_expense, "50", team_id="team-002")

        result = service.check_all_teams()

        assert result.data['teams_checked'] == 2
        assert result.data['total_alerts'] == 1
        assert result.data['failures'] == 0
        assert [team.id for _, team in notifier.sent] == [sample_team_id]

    def test_failures_counted(self, service, temp_db, sample_team_id):
        temp_db.upsert_team("team-zero", "Zero", Decimal("0"))

        result = service.check_all_teams()

        assert result.data['teams_checked'] == 2
        assert result.data['failures'] == 1


class TestBudgetQueries:
    """Tests for status filters, summaries and forecasts."""

    @pytest.fixture
    def three_teams(self, temp_db, make_expense):
        for team_id, spent in [("a", "100"), ("b", "850"), ("c", "1200")]:
            temp_db.upsert_team(team_id, f"Team {team_id.upper()}", Decimal("1000"))
            spend(temp_db, make_expense, spent, team_id=team_id)
            temp_db.update_total_spent(team_id)

    @pytest.mark.parametrize("status,expected", [
        ("all", ["a", "b", "c"]),
        ("good", ["a"]),
        ("warning", ["b"]),
        ("critical", ["c"]),
        ("over_budget", ["c"]),
    ])
    def test_teams_by_status(self, service, three_teams, status, expected):
        result = service.get_teams_by_budget_status(status)
        assert result.success
        assert sorted(t['id'] for t in result.data['teams']) == expected

    def test_unknown_status(self, service):
        result = service.get_teams_by_budget_status("bogus")
        assert not result.success

    def test_budget_summary(self, service, three_teams):
        result = service.get_budget_summary()

        assert result.data['total_teams'] == 3
        assert result.data['total_budget'] == 3000.0
        assert result.data['total_spent'] == 2150.0
        assert result.data['avg_utilization'] == 72
        assert result.data['status_counts'] == {'good': 1, 'warning': 1, 'critical': 0, 'over_budget': 1}
        assert result.data['top_spending_teams'][0]['id'] == "c"
        assert result.data['top_spending_teams'][0]['budget_status'] == "over_budget"

    def test_summary_critical_below_full_budget(self, temp_db, three_teams):
        """Test that critical counts only below 100%, where over_budget takes over."""
        config = AppConfig(db_path=temp_db.db_path, alerts=AlertThresholds(warning=70, critical=80))

        result = BudgetService(temp_db, config=config).get_budget_summary()

        assert result.data['status_counts'] == {'good': 1, 'warning': 0, 'critical': 1, 'over_budget': 1}

    def test_forecast(self, service, temp_db, sample_team_id, make_expense, today):
        spend(temp_db, make_expense, "100")
        temp_db.update_total_spent(sample_team_id)

        result = service.calculate_budget_forecast(sample_team_id, today=today)

        assert result.success
        forecast = result.data['forecast']
        assert forecast['current_utilization'] == 10
        assert forecast['projected_utilization'] == 310
        assert forecast['is_over_budget_risk'] is True
        assert forecast['trend_direction'] == "insufficient_data"

    def test_forecast_missing_team(self, service):
        assert not service.calculate_budget_forecast("nope").success
