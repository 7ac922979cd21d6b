"""
Sentry Error Tracking Module

Reports swallowed notification failures with run context.
"""

from .setup import (
    init_sentry,
    is_initialized,
    set_run_context,
    add_breadcrumb,
    capture_exception,
)

__all__ = [
    'init_sentry',
    'is_initialized',
    'set_run_context',
    'add_breadcrumb',
    'capture_exception',
]
