"""
Slack Delivery Module

Block Kit message building, webhook and bot senders, and mention resolution.
"""

from .blocks import SlackMessageBuilder
from .sender import SlackSender, WebhookSlackSender, ErrorLogDeduper
from .bot import BotSlackSender
from .users import SlackUserResolver

__all__ = [
    'SlackMessageBuilder',
    'SlackSender',
    'WebhookSlackSender',
    'ErrorLogDeduper',
    'BotSlackSender',
    'SlackUserResolver',
]
