#!/usr/bin/env python3
"""Debug script to check budget alert state and notifier delivery."""

import sys
import traceback

# Add project to path
sys.path.insert(0, '.')

from teamspend.alerts.base import AlertEvent, AlertLevel
from teamspend.alerts.notifiers import build_notifier
from teamspend.cache.database import Database
from teamspend.services.budget_service import BudgetService
from teamspend.utils.config import ConfigError, configure_logging, load_config, validate_config
from teamspend.utils.formatters import format_currency


def main():
    print("=" * 60)
    print("TeamSpend Alert Debug Script")
    print("=" * 60)

    # Load config
    print("\n[1] Loading configuration...")
    config = load_config()
    try:
        validate_config(config)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return
    configure_logging(config.log_level)
    print(f"    Thresholds: warning={config.alerts.warning}% critical={config.alerts.critical}%")
    print(f"    SMTP configured: {config.notifier.smtp_configured}")

    # Initialize database
    print("\n[2] Initializing database...")
    db = Database(config.db_path)
    print(f"    Database path: {db.db_path}")

    # Current team state
    print("\n[3] Current team state...")
    teams = db.get_teams()
    if not teams:
        print("    No active teams")
        return
    for team in teams:
        flags = team.alert_flags
        print(f"    - {team.name}: {format_currency(team.total_spent)} of "
              f"{format_currency(team.budget)} ({team.budget_utilization}%) "
              f"warning={flags.warning} critical={flags.critical} v{team.alert_version}")

    # Run the check
    print("\n[4] Running budget check for all teams...")
    notifier = build_notifier(config.notifier)
    service = BudgetService(db, notifier=notifier, config=config)
    try:
        result = service.check_all_teams()
        print(f"    Teams checked: {result.data['teams_checked']}")
        print(f"    Alerts sent: {result.data['total_alerts']}")
        print(f"    Failures: {result.data['failures']}")
        for r in result.data['results']:
            if not r['success']:
                print(f"      ERROR: {r['message']}")
            for alert in r.get('alerts_sent', []):
                delivery = alert['delivery']
                status = "OK" if delivery['success'] else f"FAILED ({delivery['error']})"
                print(f"      {alert['team_id']}: {alert['level']} at {alert['utilization']}% - {status}")
    except Exception as e:
        print(f"    ERROR: {e}")
        traceback.print_exc()
        return

    # Test notifier
    print("\n[5] Testing notifier with a sample event...")
    team = teams[0]
    event = AlertEvent(
        team_id=team.id,
        level=AlertLevel.WARNING,
        utilization=team.budget_utilization,
        threshold=config.alerts.warning
    )
    delivery = notifier.send_alert(event, team)
    if delivery.success:
        print(f"    Delivered via {delivery.provider}: {delivery.message}")
    else:
        print(f"    ERROR: {delivery.error}")

    print("\n" + "=" * 60)
    print("Debug complete")
    print("=" * 60)


if __name__ == "__main__":
    main()
