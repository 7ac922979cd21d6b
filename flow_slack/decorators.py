"""
Notification Decorators

Guards that keep notification failures away from the host pipeline.
"""

import functools
import logging
import time
from typing import Any, Callable, Dict, Optional, TypeVar, cast

from .sentry.setup import add_breadcrumb, capture_exception

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def capture_errors(
    hook_name: Optional[str] = None,
    reraise: bool = False,
    tags: Optional[Dict[str, str]] = None,
) -> Callable[[F], F]:
    """
    Decorator to catch, log and report exceptions from a lifecycle hook.

    By default the exception is swallowed and the wrapped function returns
    None, so the engine never sees a notification failure.

    Args:
        hook_name: Name used in logs and as the Sentry ``hook`` tag
        reraise: Whether to reraise the exception after capture
        tags: Additional tags to include

    Usage:
        @capture_errors(hook_name="on_flow_complete")
        def on_flow_complete(self):
            ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            name = hook_name or func.__name__

            add_breadcrumb(message=f"Hook {name}", category="lifecycle", level="debug")

            try:
                return func(*args, **kwargs)

            except Exception as e:
                error_tags = {"hook": name}
                if tags:
                    error_tags.update(tags)

                logger.warning("Slack plugin: Error in %s: %s", name, e)
                logger.debug("Slack plugin: %s failure details", name, exc_info=True)
                capture_exception(exception=e, tags=error_tags)

                if reraise:
                    raise

                return None

        return cast(F, wrapper)

    return decorator


def track_performance(
    operation_name: Optional[str] = None,
    warn_threshold_seconds: float = 10.0,
) -> Callable[[F], F]:
    """
    Decorator to warn about slow Slack API operations.

    Args:
        operation_name: Name for the operation
        warn_threshold_seconds: Log warning if exceeds this duration

    Usage:
        @track_performance(operation_name="upload_file", warn_threshold_seconds=60)
        def upload_file(self, path):
            ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            name = operation_name or func.__name__
            start_time = time.monotonic()

            try:
                return func(*args, **kwargs)

            finally:
                duration = time.monotonic() - start_time

                add_breadcrumb(
                    message=f"{name} completed in {duration:.2f}s",
                    category="performance",
                    level="info",
                    data={"duration_seconds": duration},
                )

                if duration > warn_threshold_seconds:
                    logger.warning(
                        "Slack plugin: %s took %.2f seconds (threshold: %.2f)",
                        name,
                        duration,
                        warn_threshold_seconds,
                    )

        return cast(F, wrapper)

    return decorator
