"""
Dealflow Configuration

Centralized, environment-driven settings for the lifecycle engines.
"""

import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


class DealflowConfig:
    """Configuration for the deal lifecycle engines."""

    # Timeline ledger
    MAX_TIMELINE_ENTRIES: int = int(os.getenv("DEALFLOW_MAX_TIMELINE_ENTRIES", "100"))

    # Validation
    STALE_DEAL_DAYS: int = int(os.getenv("DEALFLOW_STALE_DEAL_DAYS", "30"))

    # Status transitions
    MIN_HOLD_HOURS: float = float(os.getenv("DEALFLOW_MIN_HOLD_HOURS", "24"))

    # Unset means transitions run without a timeout
    TRANSITION_TIMEOUT_SECONDS: Optional[float] = _optional_float(
        "DEALFLOW_TRANSITION_TIMEOUT_SECONDS"
    )

    # Observability
    SERVICE_NAME: str = os.getenv("DEALFLOW_SERVICE_NAME", "dealflow")
    LOG_LEVEL: str = os.getenv("DEALFLOW_LOG_LEVEL", "INFO")
    LOG_STRUCTURED: bool = os.getenv("DEALFLOW_LOG_STRUCTURED", "true").lower() == "true"
    OTLP_ENDPOINT: Optional[str] = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None
    OTEL_CONSOLE_EXPORT: bool = os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if self.MAX_TIMELINE_ENTRIES < 1:
            issues.append("ERROR: DEALFLOW_MAX_TIMELINE_ENTRIES must be at least 1")

        if self.STALE_DEAL_DAYS < 1:
            issues.append("ERROR: DEALFLOW_STALE_DEAL_DAYS must be at least 1")

        if self.MIN_HOLD_HOURS < 0:
            issues.append("ERROR: DEALFLOW_MIN_HOLD_HOURS cannot be negative")

        if self.TRANSITION_TIMEOUT_SECONDS is not None and self.TRANSITION_TIMEOUT_SECONDS <= 0:
            issues.append("WARNING: DEALFLOW_TRANSITION_TIMEOUT_SECONDS should be positive")

        return issues


# Global config instance
config = DealflowConfig()
