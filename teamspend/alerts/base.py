"""Base alert types and the notifier interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Any

from teamspend.api.models import AlertFlags, Team


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertLevel(Enum):
    """Budget alert levels."""
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class AlertEvent:
    """A budget alert decided by the engine, ready for delivery."""
    team_id: str
    level: AlertLevel
    utilization: int
    threshold: int
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        """Convert event to dictionary for storage."""
        return {
            'team_id': self.team_id,
            'level': self.level.value,
            'utilization': self.utilization,
            'threshold': self.threshold,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass
class AlertDecision:
    """Result of one alert evaluation: next flag state plus events to emit."""
    new_flags: AlertFlags
    events: list[AlertEvent] = field(default_factory=list)


@dataclass
class NotificationResult:
    """Outcome of a delivery attempt. Failures are reported, not raised."""
    success: bool
    provider: str
    message: Optional[str] = None
    error: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'provider': self.provider,
            'message': self.message,
            'error': self.error,
            'metadata': self.metadata
        }


class Notifier(ABC):
    """Base class for alert delivery transports."""

    @property
    @abstractmethod
    def provider(self) -> str:
        """Short name of the transport, stored with alert history."""
        pass

    @abstractmethod
    def send_alert(self, event: AlertEvent, team: Team) -> NotificationResult:
        """Deliver an alert. Must not raise for delivery failures."""
        pass
