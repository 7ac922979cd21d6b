"""
Sentry Setup and Context Management

Reports notification failures that are otherwise swallowed, so that a
broken Slack integration is visible without affecting the pipeline.
"""

import logging
from typing import Any, Dict, Optional

from ..config import SentryConfig

logger = logging.getLogger(__name__)

# Track initialization state
_sentry_initialized = False


def init_sentry(config: Optional[SentryConfig], run_name: Optional[str] = None) -> bool:
    """
    Initialize Sentry SDK.

    Args:
        config: SentryConfig with DSN
        run_name: Pipeline run name, set as a tag

    Returns:
        True if initialized successfully
    """
    global _sentry_initialized

    if _sentry_initialized:
        return True

    if config is None or not config.enabled:
        logger.debug("Sentry not configured, skipping initialization")
        return False

    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        logging_integration = LoggingIntegration(
            level=logging.INFO,  # Capture INFO and above as breadcrumbs
            event_level=logging.ERROR,  # Send ERROR and above as events
        )

        sentry_sdk.init(
            dsn=config.dsn,
            environment=config.environment,
            integrations=[logging_integration],
            send_default_pii=False,
            attach_stacktrace=True,
        )

        sentry_sdk.set_tag("component", "slack-notifications")
        if run_name:
            sentry_sdk.set_tag("run_name", run_name)

        _sentry_initialized = True
        logger.debug("Sentry initialized successfully")
        return True

    except Exception as e:
        logger.error("Failed to initialize Sentry: %s", e)
        return False


def is_initialized() -> bool:
    return _sentry_initialized


def set_run_context(context: Dict[str, Any]) -> None:
    """
    Attach pipeline run details to subsequent Sentry events.

    Args:
        context: Run name, id, script and work directory
    """
    if not _sentry_initialized:
        return

    try:
        import sentry_sdk

        sentry_sdk.set_context("pipeline", context)

    except Exception as e:
        logger.debug("Failed to set pipeline context: %s", e)


def add_breadcrumb(
    message: str,
    category: str = "slack",
    level: str = "info",
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """Record a notification step ahead of any reported failure."""
    if not _sentry_initialized:
        return

    try:
        import sentry_sdk

        sentry_sdk.add_breadcrumb(message=message, category=category, level=level, data=data)

    except Exception as e:
        logger.debug("Failed to add breadcrumb: %s", e)


def capture_exception(
    exception: BaseException,
    level: str = "warning",
    tags: Optional[Dict[str, str]] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Report a swallowed notification failure.

    Failures are reported at warning level by default since the pipeline
    itself keeps running.

    Args:
        exception: Error raised inside a hook or sender
        level: Sentry level for the event
        tags: Event tags, e.g. ``{"hook": "on_flow_complete"}``
        extra: Event extras

    Returns:
        Sentry event ID, or None when Sentry is off or reporting failed
    """
    if not _sentry_initialized:
        return None

    try:
        import sentry_sdk

        with sentry_sdk.new_scope() as scope:
            scope.set_level(level)
            for key, value in (tags or {}).items():
                scope.set_tag(key, value)
            for key, value in (extra or {}).items():
                scope.set_extra(key, value)
            return sentry_sdk.capture_exception(exception)

    except Exception as e:
        logger.debug("Failed to report notification error to Sentry: %s", e)
        return None
