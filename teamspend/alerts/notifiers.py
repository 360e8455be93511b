"""Alert delivery: logging, SMTP email, and an ordered fallback chain."""

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable, Optional, Sequence

from teamspend.alerts.base import AlertEvent, AlertLevel, Notifier, NotificationResult
from teamspend.api.models import Team
from teamspend.utils.config import NotifierConfig
from teamspend.utils.formatters import format_currency, format_date, format_utilization

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    """Email recipient."""
    email: str
    name: str


RecipientStrategy = Callable[[Team], list[Recipient]]


def managers(team: Team) -> list[Recipient]:
    """Active team managers."""
    return [
        Recipient(email=m.email, name=m.name)
        for m in team.members
        if m.is_manager and m.is_active and m.email
    ]


def active_members(team: Team) -> list[Recipient]:
    """Every active team member."""
    return [
        Recipient(email=m.email, name=m.name)
        for m in team.members
        if m.is_active and m.email
    ]


def fallback_address(address: Optional[str]) -> RecipientStrategy:
    """A single configured address, used when the team has nobody to notify."""
    def strategy(team: Team) -> list[Recipient]:
        return [Recipient(email=address, name="Team Manager")] if address else []
    return strategy


def resolve_recipients(team: Team, strategies: Sequence[RecipientStrategy]) -> list[Recipient]:
    """Return the result of the first strategy that yields any recipients."""
    for strategy in strategies:
        recipients = strategy(team)
        if recipients:
            return recipients
    return []


def build_alert_message(team: Team, event: AlertEvent) -> tuple[str, str]:
    """Build (subject, plain-text body) for a budget alert."""
    utilization = format_utilization(event.utilization)
    if event.level == AlertLevel.WARNING:
        subject = f"Budget Warning: {team.name} at {utilization} of budget"
        action = "Please review upcoming expenses and consider deferring non-essential items"
    else:
        state = "EXCEEDED" if event.utilization >= 100 else "CRITICAL"
        subject = f"Budget Alert: {team.name} {state} budget usage"
        action = "Immediate action required - spending should be restricted"

    body = "\n".join([
        f"{event.level.value.title()} budget alert for {team.name}",
        "",
        f"Budget utilization: {utilization}",
        f"Total spent: {format_currency(team.total_spent)}",
        f"Budget: {format_currency(team.budget)}",
        f"Remaining: {format_currency(team.remaining_budget)}",
        "",
        action,
        "",
        f"Generated on {format_date(event.timestamp)}",
    ])
    return subject, body


class LoggingNotifier(Notifier):
    """Writes alerts to the application log. Never fails."""

    @property
    def provider(self) -> str:
        return "console-log"

    def send_alert(self, event: AlertEvent, team: Team) -> NotificationResult:
        logger.warning(
            f"BUDGET ALERT: Team \"{team.name}\" - {event.level.value} "
            f"({event.utilization}% utilized)"
        )
        return NotificationResult(success=True, provider=self.provider,
                                  message="Alert logged")


class EmailNotifier(Notifier):
    """Sends alerts over SMTP to the recipients chosen by a strategy chain."""

    def __init__(self, config: NotifierConfig,
                 strategies: Optional[Sequence[RecipientStrategy]] = None,
                 smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP):
        self.config = config
        self.strategies = list(strategies) if strategies is not None else [
            managers,
            active_members,
            fallback_address(config.fallback_recipient),
        ]
        self._smtp_factory = smtp_factory

    @property
    def provider(self) -> str:
        return "smtp"

    def build_message(self, event: AlertEvent, team: Team,
                      recipients: list[Recipient]) -> EmailMessage:
        subject, body = build_alert_message(team, event)
        msg = EmailMessage()
        msg["From"] = f"Team Expense System <{self.config.sender_email}>"
        msg["To"] = ", ".join(f'"{r.name}" <{r.email}>' for r in recipients)
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def send_alert(self, event: AlertEvent, team: Team) -> NotificationResult:
        recipients = resolve_recipients(team, self.strategies)
        if not recipients:
            return NotificationResult(success=False, provider=self.provider,
                                      error="No recipients found for team")

        if not self.config.smtp_configured:
            return NotificationResult(success=False, provider=self.provider,
                                      error="SMTP not configured")

        msg = self.build_message(event, team, recipients)
        try:
            with self._smtp_factory(self.config.smtp_host, self.config.smtp_port,
                                    timeout=self.config.timeout_seconds) as smtp:
                smtp.starttls()
                smtp.login(self.config.smtp_user, self.config.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery failed for team {team.id}: {e}")
            return NotificationResult(success=False, provider=self.provider, error=str(e))

        logger.info(f"Budget alert emailed for team {team.name} to {len(recipients)} recipient(s)")
        return NotificationResult(
            success=True,
            provider=self.provider,
            message=f"Sent to {len(recipients)} recipient(s)",
            metadata={"recipients": [r.email for r in recipients]}
        )


class FallbackNotifier(Notifier):
    """Tries each notifier in order until one succeeds."""

    def __init__(self, notifiers: Sequence[Notifier]):
        if not notifiers:
            raise ValueError("FallbackNotifier needs at least one notifier")
        self.notifiers = list(notifiers)

    @property
    def provider(self) -> str:
        return "fallback"

    def send_alert(self, event: AlertEvent, team: Team) -> NotificationResult:
        errors = []
        for notifier in self.notifiers:
            try:
                result = notifier.send_alert(event, team)
            except Exception as e:
                # send_alert is not guaranteed not to raise
                logger.error(f"Notifier {notifier.provider} raised: {e}")
                result = NotificationResult(success=False, provider=notifier.provider, error=str(e))

            if result.success:
                return result
            errors.append(f"{result.provider}: {result.error}")
            logger.warning(f"Notifier {result.provider} failed, trying next: {result.error}")

        return NotificationResult(success=False, provider=self.provider,
                                  error="; ".join(errors))


def build_notifier(config: NotifierConfig) -> Notifier:
    """Email first when SMTP is configured, always ending with the log."""
    if config.smtp_configured:
        return FallbackNotifier([EmailNotifier(config), LoggingNotifier()])
    logger.warning("SMTP not configured - budget alerts will be written to the log")
    return LoggingNotifier()
