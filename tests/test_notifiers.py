"""Tests for alert delivery."""

import smtplib

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from teamspend.alerts.base import AlertEvent, AlertLevel, NotificationResult
from teamspend.alerts.notifiers import (
    EmailNotifier,
    FallbackNotifier,
    LoggingNotifier,
    active_members,
    build_alert_message,
    build_notifier,
    fallback_address,
    managers,
    resolve_recipients,
)
from teamspend.api.models import Team, TeamMember
from teamspend.utils.config import NotifierConfig


@pytest.fixture
def team():
    return Team(
        id="team-001",
        name="Platform",
        budget=Decimal("1000"),
        total_spent=Decimal("850"),
        members=[
            TeamMember(name="Alice", email="alice@example.com", role="manager"),
            TeamMember(name="Bob", email="bob@example.com"),
            TeamMember(name="Carol", email="carol@example.com", role="manager", is_active=False),
        ]
    )


@pytest.fixture
def warning_event():
    return AlertEvent(team_id="team-001", level=AlertLevel.WARNING, utilization=85, threshold=80)


@pytest.fixture
def smtp_config():
    return NotifierConfig(smtp_host="smtp.example.com", smtp_user="alerts",
                          smtp_password="secret", sender_email="alerts@example.com")


class FakeSMTP:
    """Stands in for smtplib.SMTP."""
    instances = []

    def __init__(self, host, port, timeout=None, fail=False):
        self.host = host
        self.port = port
        self.fail = fail
        self.calls = []
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append("login")
        if self.fail:
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    def send_message(self, msg):
        self.calls.append("send_message")
        self.sent.append(msg)


class TestRecipients:
    """Tests for recipient selection."""

    def test_managers_first(self, team):
        recipients = resolve_recipients(team, [managers, active_members])
        assert [r.email for r in recipients] == ["alice@example.com"]

    def test_members_when_no_manager(self, team):
        team = team.model_copy(update={'members': team.members[1:]})
        recipients = resolve_recipients(team, [managers, active_members])
        assert [r.email for r in recipients] == ["bob@example.com"]

    def test_fallback_address(self, team):
        team = team.model_copy(update={'members': []})
        recipients = resolve_recipients(team, [managers, active_members,
                                               fallback_address("ops@example.com")])
        assert [r.email for r in recipients] == ["ops@example.com"]

    def test_nobody(self, team):
        team = team.model_copy(update={'members': []})
        assert resolve_recipients(team, [managers, fallback_address(None)]) == []


class TestAlertMessage:
    """Tests for alert message content."""

    def test_warning_subject(self, team, warning_event):
        subject, body = build_alert_message(team, warning_event)
        assert subject == "Budget Warning: Platform at 85% of budget"
        assert "$850.00" in body
        assert "$150.00" in body
        assert "Budget utilization: 85%" in body

    def test_body_shows_alert_date(self, team):
        event = AlertEvent(team_id=team.id, level=AlertLevel.WARNING, utilization=85, threshold=80,
                           timestamp=datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc))
        _, body = build_alert_message(team, event)
        assert body.endswith("Generated on Mar 15, 2024")

    def test_critical_exceeded(self, team):
        event = AlertEvent(team_id=team.id, level=AlertLevel.CRITICAL, utilization=110, threshold=100)
        subject, _ = build_alert_message(team, event)
        assert subject == "Budget Alert: Platform EXCEEDED budget usage"

    def test_critical_below_full_budget(self, team):
        event = AlertEvent(team_id=team.id, level=AlertLevel.CRITICAL, utilization=95, threshold=90)
        subject, _ = build_alert_message(team, event)
        assert subject == "Budget Alert: Platform CRITICAL budget usage"


class TestEmailNotifier:
    """Tests for SMTP delivery."""

    def test_sends_to_managers(self, team, warning_event, smtp_config):
        FakeSMTP.instances = []
        notifier = EmailNotifier(smtp_config, smtp_factory=FakeSMTP)

        result = notifier.send_alert(warning_event, team)

        assert result.success is True
        assert result.provider == "smtp"
        assert result.metadata == {"recipients": ["alice@example.com"]}
        smtp = FakeSMTP.instances[0]
        assert smtp.calls == ["starttls", "login", "send_message"]
        assert smtp.sent[0]["Subject"] == "Budget Warning: Platform at 85% of budget"

    def test_smtp_failure_reported(self, team, warning_event, smtp_config):
        notifier = EmailNotifier(
            smtp_config,
            smtp_factory=lambda host, port, timeout=None: FakeSMTP(host, port, fail=True)
        )

        result = notifier.send_alert(warning_event, team)

        assert result.success is False
        assert "bad credentials" in result.error

    def test_not_configured(self, team, warning_event):
        result = EmailNotifier(NotifierConfig(), smtp_factory=FakeSMTP).send_alert(warning_event, team)
        assert result.success is False
        assert result.error == "SMTP not configured"

    def test_no_recipients(self, team, warning_event, smtp_config):
        team = team.model_copy(update={'members': []})
        result = EmailNotifier(smtp_config, smtp_factory=FakeSMTP).send_alert(warning_event, team)
        assert result.success is False
        assert result.error == "No recipients found for team"


class TestFallbackNotifier:
    """Tests for the fallback chain."""

    def test_first_success_wins(self, team, warning_event, make_notifier):
        first, second = make_notifier(), make_notifier()
        result = FallbackNotifier([first, second]).send_alert(warning_event, team)

        assert result.success is True
        assert len(first.sent) == 1
        assert second.sent == []

    def test_falls_through_failures(self, team, warning_event, make_notifier):
        failing = make_notifier(succeed=False)
        raising = make_notifier(raise_error=True)
        result = FallbackNotifier([failing, raising, LoggingNotifier()]).send_alert(warning_event, team)

        assert result.success is True
        assert result.provider == "console-log"

    def test_all_fail(self, team, warning_event, make_notifier):
        result = FallbackNotifier([make_notifier(succeed=False)]).send_alert(warning_event, team)
        assert result.success is False
        assert "delivery refused" in result.error

    def test_needs_notifiers(self):
        with pytest.raises(ValueError):
            FallbackNotifier([])


class TestBuildNotifier:
    """Tests for notifier selection from config."""

    def test_logging_without_smtp(self):
        assert isinstance(build_notifier(NotifierConfig()), LoggingNotifier)

    def test_email_with_log_fallback(self, smtp_config):
        notifier = build_notifier(smtp_config)
        assert isinstance(notifier, FallbackNotifier)
        assert [n.provider for n in notifier.notifiers] == ["smtp", "console-log"]

    def test_logging_notifier_result(self, team, warning_event):
        result = LoggingNotifier().send_alert(warning_event, team)
        assert result == NotificationResult(success=True, provider="console-log",
                                            message="Alert logged")
