"""Configuration management for TeamSpend."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


DEFAULT_CONFIG_PATH = Path.home() / ".teamspend" / "config.toml"


class ConfigError(ValueError):
    """Raised when configuration values are missing or inconsistent."""
    pass


@dataclass
class AlertThresholds:
    """Budget alert thresholds, as integer percentages of budget."""
    warning: int = 80
    critical: int = 100


@dataclass
class AnalysisConfig:
    """Forecast and anomaly detection settings."""
    lookback_days: int = 30
    forecast_window_days: int = 30
    duplicate_window_days: int = 7
    similarity_threshold: float = 0.7
    outlier_confidence: float = 0.7
    max_findings: int = 10


@dataclass
class ClassifierConfig:
    """External category classifier settings."""
    enabled: bool = False
    host: str = "http://localhost:11434"
    model: str = "qwen3:8b"
    timeout_seconds: float = 10.0


@dataclass
class NotifierConfig:
    """Alert delivery settings."""
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    sender_email: str = "noreply@teamexpenses.com"
    fallback_recipient: Optional[str] = None
    timeout_seconds: float = 10.0

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)


@dataclass
class AppConfig:
    """Application configuration."""
    db_path: Path
    alerts: AlertThresholds = field(default_factory=AlertThresholds)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)
    max_workers: int = 4
    log_level: str = "INFO"


def _read_toml(path: Path) -> dict[str, Any]:
    """Read a TOML file, returning an empty mapping if it doesn't exist."""
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_config(path: Optional[Path] = None, env: Optional[dict[str, str]] = None) -> AppConfig:
    """
    Load configuration from a TOML file with environment overrides.

    Environment variables win over file values so deployments can tweak
    thresholds without editing the file.
    """
    env = os.environ if env is None else env
    data = _read_toml(path or DEFAULT_CONFIG_PATH)

    # Alert thresholds
    alert_section = data.get("alert_thresholds", {})
    alerts = AlertThresholds(
        warning=int(env.get("BUDGET_WARNING_THRESHOLD") or alert_section.get("warning", 80)),
        critical=int(env.get("BUDGET_CRITICAL_THRESHOLD") or alert_section.get("critical", 100)),
    )

    # Analysis
    analysis_section = data.get("analysis", {})
    analysis = AnalysisConfig(
        lookback_days=int(analysis_section.get("lookback_days", 30)),
        forecast_window_days=int(analysis_section.get("forecast_window_days", 30)),
        duplicate_window_days=int(analysis_section.get("duplicate_window_days", 7)),
        similarity_threshold=float(analysis_section.get("similarity_threshold", 0.7)),
        outlier_confidence=float(analysis_section.get("outlier_confidence", 0.7)),
        max_findings=int(analysis_section.get("max_findings", 10)),
    )

    # Classifier
    classifier_section = data.get("classifier", {})
    host = env.get("OLLAMA_HOST") or classifier_section.get("host", "http://localhost:11434")
    classifier = ClassifierConfig(
        enabled=bool(env.get("OLLAMA_HOST")) or bool(classifier_section.get("enabled", False)),
        host=host,
        model=env.get("OLLAMA_MODEL") or classifier_section.get("model", "qwen3:8b"),
        timeout_seconds=float(classifier_section.get("timeout_seconds", 10.0)),
    )

    # Notifier
    notifier_section = data.get("notifier", {})
    notifier = NotifierConfig(
        smtp_host=env.get("SMTP_HOST") or notifier_section.get("smtp_host"),
        smtp_port=int(env.get("SMTP_PORT") or notifier_section.get("smtp_port", 587)),
        smtp_user=env.get("SMTP_USER") or notifier_section.get("smtp_user"),
        smtp_password=env.get("SMTP_PASS") or notifier_section.get("smtp_password"),
        sender_email=env.get("SENDER_EMAIL") or notifier_section.get("sender_email", "noreply@teamexpenses.com"),
        fallback_recipient=env.get("SENDER_EMAIL") or notifier_section.get("fallback_recipient"),
        timeout_seconds=float(notifier_section.get("timeout_seconds", 10.0)),
    )

    # Database path
    db_path = env.get("TEAMSPEND_DB_PATH") or data.get("db_path")
    db_path = Path(db_path) if db_path else Path.home() / ".teamspend" / "teamspend.db"

    return AppConfig(
        db_path=db_path,
        alerts=alerts,
        analysis=analysis,
        classifier=classifier,
        notifier=notifier,
        max_workers=int(data.get("max_workers", 4)),
        log_level=str(data.get("log_level", "INFO")),
    )


def validate_thresholds(thresholds: AlertThresholds) -> None:
    """Validate alert thresholds. The alert engine assumes these hold."""
    if thresholds.warning <= 0:
        raise ConfigError(f"Warning threshold must be positive, got {thresholds.warning}")
    if thresholds.warning >= thresholds.critical:
        raise ConfigError(
            f"Warning threshold ({thresholds.warning}) must be below "
            f"critical threshold ({thresholds.critical})"
        )


def validate_config(config: AppConfig) -> None:
    """Validate a loaded configuration at startup."""
    validate_thresholds(config.alerts)

    analysis = config.analysis
    if analysis.lookback_days < 1 or analysis.forecast_window_days < 1:
        raise ConfigError("Lookback and forecast windows must be at least one day")
    if not 0 <= analysis.similarity_threshold <= 1:
        raise ConfigError("Similarity threshold must be between 0 and 1")
    if config.max_workers < 1:
        raise ConfigError("max_workers must be at least 1")


def configure_logging(level: str = "INFO") -> None:
    """Set up basic logging for scripts."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
