"""Pytest fixtures for TeamSpend tests."""

import pytest
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

from teamspend.alerts.base import Notifier, NotificationResult
from teamspend.api.models import Expense, ExpenseStatus
from teamspend.cache.database import Database


class RecordingNotifier(Notifier):
    """Notifier that remembers what it was asked to send."""

    def __init__(self, succeed=True, raise_error=False):
        self.succeed = succeed
        self.raise_error = raise_error
        self.sent = []

    @property
    def provider(self):
        return "recording"

    def send_alert(self, event, team):
        self.sent.append((event, team))
        if self.raise_error:
            raise RuntimeError("transport exploded")
        if self.succeed:
            return NotificationResult(success=True, provider=self.provider, message="recorded")
        return NotificationResult(success=False, provider=self.provider, error="delivery refused")


class FakeClassifier:
    """Classifier stub returning a canned answer or raising."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def suggest(self, description, categories):
        self.calls.append((description, list(categories)))
        if self.error:
            raise self.error
        return self.response


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        db = Database(db_path)
        yield db


@pytest.fixture
def today():
    """Fixed reference date."""
    return date(2024, 3, 15)


@pytest.fixture
def sample_team_id(temp_db):
    """A team with a $1,000.00 budget, a manager and a member."""
    temp_db.upsert_team("team-001", "Platform", Decimal("1000.00"))
    temp_db.add_team_member("team-001", "Alice Manager", "Alice@Example.com", role="manager")
    temp_db.add_team_member("team-001", "Bob Member", "bob@example.com")
    return "team-001"


@pytest.fixture
def make_expense():
    """Factory for expense models with sensible defaults."""
    counter = {'n': 0}

    def _make(amount, description="Expense", expense_date=date(2024, 3, 10),
              team_id="team-001", status=ExpenseStatus.APPROVED, expense_id=None, **kwargs):
        counter['n'] += 1
        return Expense(
            id=expense_id or f"exp-{counter['n']:03d}",
            team_id=team_id,
            amount=Decimal(str(amount)),
            description=description,
            date=expense_date,
            status=status,
            **kwargs
        )

    return _make


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_classifier():
    """Factory for classifier stubs."""
    return FakeClassifier


@pytest.fixture
def make_notifier():
    """Factory for recording notifiers."""
    return RecordingNotifier
