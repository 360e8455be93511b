"""SQLite store for teams, expenses and alert state."""

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional, Iterator
import json

from teamspend.api.models import (
    AlertFlags,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    Team,
    TeamMember,
)


SCHEMA = """
-- Teams table; alert_version guards alert flag updates
CREATE TABLE IF NOT EXISTS teams (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    budget TEXT NOT NULL,
    total_spent TEXT NOT NULL DEFAULT '0',
    alert_warning INTEGER DEFAULT 0,
    alert_critical INTEGER DEFAULT 0,
    alert_version INTEGER DEFAULT 0,
    is_active INTEGER DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Team members table
CREATE TABLE IF NOT EXISTS team_members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id TEXT NOT NULL,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    role TEXT DEFAULT 'member',
    is_active INTEGER DEFAULT 1,
    UNIQUE (team_id, email),
    FOREIGN KEY (team_id) REFERENCES teams(id)
);

-- Expenses table
CREATE TABLE IF NOT EXISTS expenses (
    id TEXT PRIMARY KEY,
    team_id TEXT NOT NULL,
    amount TEXT NOT NULL,
    description TEXT NOT NULL,
    category TEXT,
    date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    is_active INTEGER DEFAULT 1,
    submitted_by TEXT,
    reviewed_by TEXT,
    rejection_reason TEXT,
    suggested_category TEXT,
    suggestion_confidence REAL,
    analysis_date TIMESTAMP,
    FOREIGN KEY (team_id) REFERENCES teams(id)
);

-- Alert history
CREATE TABLE IF NOT EXISTS alert_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id TEXT NOT NULL,
    level TEXT NOT NULL,
    utilization INTEGER NOT NULL,
    threshold INTEGER NOT NULL,
    created_at TIMESTAMP NOT NULL,
    delivered INTEGER DEFAULT 0,
    provider TEXT,
    error TEXT,
    metadata TEXT
);

-- Indexes for performance
CREATE INDEX IF NOT EXISTS idx_expenses_team_date ON expenses(team_id, date);
CREATE INDEX IF NOT EXISTS idx_expenses_status ON expenses(team_id, status, is_active);
CREATE INDEX IF NOT EXISTS idx_members_team ON team_members(team_id);
CREATE INDEX IF NOT EXISTS idx_alert_history_team ON alert_history(team_id, created_at);
"""


class StoreError(Exception):
    """Raised when a write references data that doesn't exist."""
    pass


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """SQLite database manager; one short-lived connection per operation."""

    def __init__(self, db_path: Optional[Path] = None):
        if db_path is None:
            # Store database in project's data directory
            db_path = Path(__file__).resolve().parent.parent.parent / "data" / "teamspend.db"
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with optimizations."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # Row conversion
    @staticmethod
    def _row_to_member(row: sqlite3.Row) -> TeamMember:
        return TeamMember(
            id=row['id'],
            name=row['name'],
            email=row['email'],
            role=row['role'],
            is_active=bool(row['is_active'])
        )

    def _row_to_team(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Team:
        members = conn.execute(
            "SELECT * FROM team_members WHERE team_id = ? ORDER BY id",
            (row['id'],)
        ).fetchall()
        return Team(
            id=row['id'],
            name=row['name'],
            budget=Decimal(row['budget']),
            total_spent=Decimal(row['total_spent']),
            alert_flags=AlertFlags(
                warning=bool(row['alert_warning']),
                critical=bool(row['alert_critical'])
            ),
            alert_version=row['alert_version'],
            members=[self._row_to_member(m) for m in members],
            is_active=bool(row['is_active'])
        )

    @staticmethod
    def _row_to_expense(row: sqlite3.Row) -> Expense:
        return Expense(
            id=row['id'],
            team_id=row['team_id'],
            amount=Decimal(row['amount']),
            description=row['description'],
            category=ExpenseCategory(row['category']) if row['category'] else None,
            date=date.fromisoformat(row['date']),
            status=ExpenseStatus(row['status']),
            is_active=bool(row['is_active']),
            submitted_by=row['submitted_by']
        )

    # Team operations
    def upsert_team(self, team_id: str, name: str, budget: Decimal, is_active: bool = True) -> None:
        """Insert or update a team. Spend totals and alert state are left alone."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO teams (id, name, budget, is_active, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    budget = excluded.budget,
                    is_active = excluded.is_active,
                    updated_at = excluded.updated_at
            """, (team_id, name, str(budget), int(is_active), _utcnow()))

    def get_team(self, team_id: str) -> Optional[Team]:
        """Get a specific team with its members."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM teams WHERE id = ?", (team_id,)).fetchone()
            return self._row_to_team(conn, row) if row else None

    def get_teams(self, active_only: bool = True) -> list[Team]:
        """Get all teams."""
        with self._get_connection() as conn:
            if active_only:
                rows = conn.execute("SELECT * FROM teams WHERE is_active = 1 ORDER BY name").fetchall()
            else:
                rows = conn.execute("SELECT * FROM teams ORDER BY name").fetchall()
            return [self._row_to_team(conn, row) for row in rows]

    def add_team_member(self, team_id: str, name: str, email: str,
                        role: str = "member", is_active: bool = True) -> int:
        """Add a member to a team and return the member ID."""
        with self._get_connection() as conn:
            try:
                cursor = conn.execute("""
                    INSERT INTO team_members (team_id, name, email, role, is_active)
                    VALUES (?, ?, ?, ?, ?)
                """, (team_id, name.strip(), email.strip().lower(), role, int(is_active)))
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Cannot add member {email} to team {team_id}: {e}") from e
            return cursor.lastrowid

    # Alert state operations
    def persist_alert_flags(self, team_id: str, flags: AlertFlags, expected_version: int) -> bool:
        """
        Compare-and-set the team's alert flags.

        Succeeds only if nobody else wrote the flags since `expected_version`
        was read; returns False on a version conflict.
        """
        with self._get_connection() as conn:
            cursor = conn.execute("""
                UPDATE teams SET
                    alert_warning = ?,
                    alert_critical = ?,
                    alert_version = alert_version + 1,
                    updated_at = ?
                WHERE id = ? AND alert_version = ?
            """, (int(flags.warning), int(flags.critical), _utcnow(), team_id, expected_version))
            return cursor.rowcount == 1

    def update_total_spent(self, team_id: str) -> Decimal:
        """Recompute a team's total from its approved, active expenses."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT amount FROM expenses
                WHERE team_id = ? AND status = 'approved' AND is_active = 1
            """, (team_id,)).fetchall()
            total = sum((Decimal(r['amount']) for r in rows), Decimal("0"))
            conn.execute(
                "UPDATE teams SET total_spent = ?, updated_at = ? WHERE id = ?",
                (str(total), _utcnow(), team_id)
            )
            return total

    # Expense operations
    def upsert_expense(self, expense: Expense) -> None:
        """Insert or update an expense."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO expenses (id, team_id, amount, description, category, date, status, is_active, submitted_by)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    amount = excluded.amount,
                    description = excluded.description,
                    category = excluded.category,
                    date = excluded.date,
                    status = excluded.status,
                    is_active = excluded.is_active,
                    submitted_by = excluded.submitted_by
            """, (expense.id, expense.team_id, str(expense.amount), expense.description.strip(),
                  expense.category.value if expense.category else None,
                  expense.date.isoformat(), expense.status.value, int(expense.is_active),
                  expense.submitted_by))

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        """Get a specific active expense."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM expenses WHERE id = ? AND is_active = 1", (expense_id,)
            ).fetchone()
            return self._row_to_expense(row) if row else None

    def set_expense_status(self, expense_id: str, status: ExpenseStatus,
                           reviewed_by: Optional[str] = None,
                           rejection_reason: Optional[str] = None) -> bool:
        """Change an expense's status. Returns False if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.execute("""
                UPDATE expenses SET status = ?, reviewed_by = ?, rejection_reason = ?
                WHERE id = ? AND is_active = 1
            """, (status.value, reviewed_by, rejection_reason, expense_id))
            return cursor.rowcount == 1

    def get_approved_expenses(self, team_id: str, since: Optional[date] = None) -> list[Expense]:
        """Approved, active expenses for a team, oldest first."""
        return self._query_expenses(team_id, since, approved_only=True)

    def get_active_expenses(self, team_id: str, since: Optional[date] = None) -> list[Expense]:
        """Active expenses of any status for a team, oldest first."""
        return self._query_expenses(team_id, since, approved_only=False)

    def _query_expenses(self, team_id: str, since: Optional[date], approved_only: bool) -> list[Expense]:
        conditions = ["team_id = ?", "is_active = 1"]
        params: list = [team_id]

        if approved_only:
            conditions.append("status = 'approved'")

        if since:
            conditions.append("date >= ?")
            params.append(since.isoformat())

        with self._get_connection() as conn:
            rows = conn.execute(f"""
                SELECT * FROM expenses
                WHERE {' AND '.join(conditions)}
                ORDER BY date, id
            """, params).fetchall()
            return [self._row_to_expense(row) for row in rows]

    def save_category_suggestion(self, expense_id: str, category: str, confidence: float) -> None:
        """Store a category suggestion on an expense."""
        with self._get_connection() as conn:
            conn.execute("""
                UPDATE expenses SET suggested_category = ?, suggestion_confidence = ?, analysis_date = ?
                WHERE id = ?
            """, (category, confidence, _utcnow(), expense_id))

    def get_category_suggestion(self, expense_id: str) -> Optional[sqlite3.Row]:
        """Get the stored suggestion for an expense, if any."""
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT suggested_category, suggestion_confidence, analysis_date
                FROM expenses WHERE id = ? AND suggested_category IS NOT NULL
            """, (expense_id,)).fetchone()
            return row

    # Alert history operations
    def save_alert_event(self, team_id: str, level: str, utilization: int, threshold: int,
                         created_at: datetime, delivered: bool, provider: Optional[str] = None,
                         error: Optional[str] = None, metadata: Optional[dict] = None) -> int:
        """Record an alert and its delivery outcome; returns the history ID."""
        with self._get_connection() as conn:
            cursor = conn.execute("""
                INSERT INTO alert_history (team_id, level, utilization, threshold, created_at, delivered, provider, error, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (team_id, level, utilization, threshold, created_at.isoformat(), int(delivered),
                  provider, error, json.dumps(metadata) if metadata else None))
            return cursor.lastrowid

    def get_alert_history(self, team_id: str, limit: int = 50) -> list[sqlite3.Row]:
        """Most recent alerts for a team."""
        with self._get_connection() as conn:
            return conn.execute("""
                SELECT * FROM alert_history
                WHERE team_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            """, (team_id, limit)).fetchall()
