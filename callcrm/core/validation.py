"""
Configuration Validation Module
Validates store and relay configuration on startup
"""
import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass

from callcrm.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    component: str
    setting: str
    is_valid: bool
    message: str


class ConfigValidator:
    """
    Validates service configuration at startup.

    Ensures the store credentials are present before the service starts
    accepting webhooks. Missing relay settings only degrade real-time
    delivery, so they are reported as warnings.
    """

    # Missed-call timeout range recommended for agents (seconds)
    RECOMMENDED_TIMEOUT_RANGE = (25, 30)

    def __init__(self, settings: Settings, strict: bool = False):
        """
        Initialize validator.

        Args:
            settings: Settings to check
            strict: If True, treat warnings as errors
        """
        self.settings = settings
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        """
        Validate all configuration.

        Returns:
            Tuple of (all_valid, list of results)
        """
        self.results = []
        settings = self.settings

        # Store
        backend = settings.storage_backend.lower()
        if backend == "memory":
            self._add_warning("storage", "STORAGE_BACKEND",
                "In-memory store configured (data is lost on restart)")
        elif backend == "supabase":
            for env_var, value in (
                ("SUPABASE_URL", settings.supabase_url),
                ("SUPABASE_SERVICE_KEY", settings.supabase_service_key),
            ):
                if not value:
                    self._add_error("storage", env_var,
                        f"Supabase store requires {env_var} to be set")
                else:
                    self._add_success("storage", env_var, f"{env_var} configured")
        else:
            self._add_error("storage", "STORAGE_BACKEND",
                f"Unknown storage backend '{settings.storage_backend}' (expected supabase or memory)")

        # Relay
        if settings.realtime_relay_url and not settings.relay_secret:
            self._add_warning("relay", "RELAY_SECRET",
                "REALTIME_RELAY_URL is set without RELAY_SECRET (relay will reject publishes)")
        elif not settings.realtime_relay_url:
            self._add_success("relay", "REALTIME_RELAY_URL",
                "No relay configured (events are published in-process)")
        else:
            self._add_success("relay", "REALTIME_RELAY_URL", "Relay configured")

        # Call handling
        low, high = self.RECOMMENDED_TIMEOUT_RANGE
        timeout = settings.missed_call_timeout_seconds
        if timeout <= 0:
            self._add_error("calls", "MISSED_CALL_TIMEOUT_SECONDS",
                "Missed-call timeout must be positive")
        elif not low <= timeout <= high:
            self._add_warning("calls", "MISSED_CALL_TIMEOUT_SECONDS",
                f"Missed-call timeout {timeout}s is outside the recommended {low}-{high}s")
        else:
            self._add_success("calls", "MISSED_CALL_TIMEOUT_SECONDS", f"Missed-call timeout {timeout}s")

        if settings.webhook_dedup_window_seconds < 0:
            self._add_error("calls", "WEBHOOK_DEDUP_WINDOW_SECONDS",
                "Dedup window cannot be negative")

        errors = [r for r in self.results if not r.is_valid]
        return len(errors) == 0, self.results

    def _add_success(self, component: str, setting: str, message: str):
        self.results.append(ValidationResult(component, setting, True, message))

    def _add_error(self, component: str, setting: str, message: str):
        self.results.append(ValidationResult(component, setting, False, message))

    def _add_warning(self, component: str, setting: str, message: str):
        """Add warning validation result."""
        self.results.append(ValidationResult(
            component=component,
            setting=setting,
            is_valid=not self.strict,  # Warnings become errors in strict mode
            message=f"WARNING: {message}"
        ))

    def log_results(self):
        """Log all validation results."""
        errors = [r for r in self.results if not r.is_valid]
        warnings = [r for r in self.results if r.is_valid and "WARNING" in r.message]
        successes = [r for r in self.results if r.is_valid and "WARNING" not in r.message]

        if successes:
            logger.info("Configuration validated:")
            for r in successes:
                logger.info(f"  ✓ [{r.component}] {r.message}")

        for r in warnings:
            logger.warning(f"  ⚠ [{r.component}] {r.message}")

        if errors:
            logger.error("Configuration errors:")
            for r in errors:
                logger.error(f"  ✗ [{r.component}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        """Get summary of errors for exception message."""
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None

        lines = ["Configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_config_on_startup(settings: Settings, strict: bool = False) -> None:
    """
    Validate configuration at startup.

    Raises:
        RuntimeError: If required configuration is missing
    """
    validator = ConfigValidator(settings, strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("Configuration validated successfully")
