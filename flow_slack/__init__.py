"""
Slack Notifications for Pipeline Runs

Provides:
- Start, completion and failure notifications with Block Kit formatting
- Throttled in-place progress updates and emoji reactions (bot token)
- Functions for sending messages and uploading files from pipeline code
- Optional Sentry tracking of notification failures

Modules:
    config - Slack configuration
    types - Workflow facts supplied by the host engine
    observer - Lifecycle observer
    extension - Functions callable from pipeline code
    slack - Message building and delivery
"""

from .config import SlackConfig, ConfigurationError
from .types import (
    EventKind,
    TaskStats,
    TraceRecord,
    WorkflowMetadata,
    WorkflowSession,
)
from .deeplink import (
    DeepLinkProvider,
    NullDeepLinkProvider,
    AttributeDeepLinkProvider,
)
from .observer import SlackObserver, SlackFactory
from .extension import slack_message, slack_file_upload

__all__ = [
    # Config
    'SlackConfig',
    'ConfigurationError',
    # Types
    'EventKind',
    'TaskStats',
    'TraceRecord',
    'WorkflowMetadata',
    'WorkflowSession',
    # Deep links
    'DeepLinkProvider',
    'NullDeepLinkProvider',
    'AttributeDeepLinkProvider',
    # Observer
    'SlackObserver',
    'SlackFactory',
    # Pipeline functions
    'slack_message',
    'slack_file_upload',
]

__version__ = '0.1.0'
