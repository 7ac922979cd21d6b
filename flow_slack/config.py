"""
Slack Notification Configuration

Resolves the ``slack`` block of the engine configuration into immutable
settings. Parsing happens once, at flow creation.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

CHANNEL_PATTERN = re.compile(r"^[#a-zA-Z0-9\-_]+$")
INTERVAL_PATTERN = re.compile(r"^(\d+)([smh])$")

DEFAULT_PROGRESS_INTERVAL_SECONDS = 300.0
DEFAULT_PLATFORM_URL = "https://cloud.seqera.io"

DEFAULT_START_MESSAGE = "🚀 *Pipeline started*"
DEFAULT_COMPLETE_MESSAGE = "✅ *Pipeline completed successfully*"
DEFAULT_ERROR_MESSAGE = "❌ *Pipeline failed*"

MessageTemplate = Union[str, Mapping[str, Any]]


class ConfigurationError(ValueError):
    """Invalid Slack configuration. Halts pipeline startup."""


def _flag(value: Any, default: bool) -> bool:
    """Read a boolean option, accepting strings from env/config files."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _section(config: Optional[Mapping[str, Any]], key: str) -> Mapping[str, Any]:
    value = (config or {}).get(key)
    return value if isinstance(value, Mapping) else {}


def _string_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def parse_interval(interval: Optional[str]) -> float:
    """
    Parse a progress interval to seconds.

    Accepts ``30s``, ``5m``, ``1h`` or a plain number of milliseconds.
    Anything else falls back to five minutes.
    """
    if not interval:
        return DEFAULT_PROGRESS_INTERVAL_SECONDS

    text = str(interval).strip()
    match = INTERVAL_PATTERN.match(text)
    if match:
        value = int(match.group(1))
        unit = match.group(2)
        return float(value * {"s": 1, "m": 60, "h": 3600}[unit])

    try:
        return int(text) / 1000.0
    except ValueError:
        logger.warning("Slack plugin: Invalid progress interval '%s', using 5m", interval)
        return DEFAULT_PROGRESS_INTERVAL_SECONDS


@dataclass(frozen=True)
class OnStartConfig:
    """Settings for the pipeline-started notification."""

    enabled: bool = True
    message: MessageTemplate = DEFAULT_START_MESSAGE
    include_command_line: bool = True
    show_footer: bool = True
    include_fields: List[str] = field(default_factory=list)
    channel: Optional[str] = None

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]) -> "OnStartConfig":
        config = config or {}
        return cls(
            enabled=_flag(config.get("enabled"), True),
            message=config.get("message") or cls.message,
            include_command_line=_flag(config.get("includeCommandLine"), True),
            show_footer=_flag(config.get("showFooter"), True),
            include_fields=_string_list(config.get("includeFields")),
            channel=config.get("channel"),
        )


@dataclass(frozen=True)
class OnCompleteConfig:
    """Settings for the pipeline-completed notification."""

    enabled: bool = True
    message: MessageTemplate = DEFAULT_COMPLETE_MESSAGE
    include_command_line: bool = True
    include_resource_usage: bool = True
    show_footer: bool = True
    include_fields: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    channel: Optional[str] = None

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]) -> "OnCompleteConfig":
        config = config or {}
        return cls(
            enabled=_flag(config.get("enabled"), True),
            message=config.get("message") or cls.message,
            include_command_line=_flag(config.get("includeCommandLine"), True),
            include_resource_usage=_flag(config.get("includeResourceUsage"), True),
            show_footer=_flag(config.get("showFooter"), True),
            include_fields=_string_list(config.get("includeFields")),
            files=_string_list(config.get("files")),
            channel=config.get("channel"),
        )


@dataclass(frozen=True)
class OnErrorConfig:
    """Settings for the pipeline-failed notification."""

    enabled: bool = True
    message: MessageTemplate = DEFAULT_ERROR_MESSAGE
    include_command_line: bool = True
    show_footer: bool = True
    include_fields: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    channel: Optional[str] = None

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]) -> "OnErrorConfig":
        config = config or {}
        return cls(
            enabled=_flag(config.get("enabled"), True),
            message=config.get("message") or cls.message,
            include_command_line=_flag(config.get("includeCommandLine"), True),
            show_footer=_flag(config.get("showFooter"), True),
            include_fields=_string_list(config.get("includeFields")),
            files=_string_list(config.get("files")),
            channel=config.get("channel"),
        )


@dataclass(frozen=True)
class OnProgressConfig:
    """Periodic progress updates (edits the start message in place)."""

    enabled: bool = False
    interval: str = "5m"

    @property
    def interval_seconds(self) -> float:
        return parse_interval(self.interval)

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]) -> "OnProgressConfig":
        config = config or {}
        return cls(
            enabled=_flag(config.get("enabled"), False),
            interval=str(config.get("interval") or "5m"),
        )


@dataclass(frozen=True)
class ReactionsConfig:
    """Emoji reactions on the start message."""

    enabled: bool = False
    on_start: str = "rocket"
    on_success: str = "white_check_mark"
    on_error: str = "x"

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]) -> "ReactionsConfig":
        config = config or {}
        return cls(
            enabled=_flag(config.get("enabled"), False),
            on_start=config.get("onStart") or "rocket",
            on_success=config.get("onSuccess") or "white_check_mark",
            on_error=config.get("onError") or "x",
        )


@dataclass(frozen=True)
class PlatformConfig:
    """Deep links to the monitoring platform's run page."""

    enabled: bool = True
    base_url: str = DEFAULT_PLATFORM_URL

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]) -> "PlatformConfig":
        config = config or {}
        return cls(
            enabled=_flag(config.get("enabled"), True),
            base_url=config.get("baseUrl") or DEFAULT_PLATFORM_URL,
        )


@dataclass(frozen=True)
class SentryConfig:
    """Optional error tracking for swallowed notification failures."""

    dsn: Optional[str] = None
    environment: str = "production"

    @property
    def enabled(self) -> bool:
        return bool(self.dsn)

    @classmethod
    def from_mapping(cls, config: Optional[Mapping[str, Any]]) -> "SentryConfig":
        config = config or {}
        return cls(
            dsn=config.get("dsn"),
            environment=config.get("environment") or "production",
        )


@dataclass(frozen=True)
class SlackConfig:
    """Resolved Slack settings for one pipeline run."""

    enabled: bool = True
    webhook: Optional[str] = None
    bot_token: Optional[str] = None
    bot_channel: Optional[str] = None
    use_threads: bool = True
    validate_on_startup: bool = True
    fail_on_invalid_config: bool = False
    on_start: OnStartConfig = field(default_factory=OnStartConfig)
    on_complete: OnCompleteConfig = field(default_factory=OnCompleteConfig)
    on_error: OnErrorConfig = field(default_factory=OnErrorConfig)
    on_progress: OnProgressConfig = field(default_factory=OnProgressConfig)
    reactions: ReactionsConfig = field(default_factory=ReactionsConfig)
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    sentry: SentryConfig = field(default_factory=SentryConfig)

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> Optional["SlackConfig"]:
        """
        Build config from the engine configuration.

        Args:
            mapping: Full engine config; settings are read from its ``slack`` key

        Returns:
            SlackConfig, or None when the plugin is disabled or not configured

        Raises:
            ConfigurationError: malformed token or channel
        """
        config = _section(mapping, "slack")

        if config.get("enabled") is not None and not _flag(config.get("enabled"), True):
            logger.debug("Slack plugin: Explicitly disabled in configuration")
            return None

        webhook = _section(config, "webhook").get("url")
        bot = _section(config, "bot")
        bot_token = bot.get("token")
        bot_channel = bot.get("channel")

        if not webhook and not bot_token:
            logger.debug("Slack plugin: No webhook URL or bot token configured, plugin will be disabled")
            return None

        if bot_token:
            if not bot_token.startswith(("xoxb-", "xoxp-")):
                raise ConfigurationError("Slack plugin: Bot token must start with 'xoxb-' or 'xoxp-'")
            if bot_token.startswith("xoxp-"):
                logger.warning(
                    "Slack plugin: You are using a User Token (xoxp-). It is recommended to use "
                    "a Bot Token (xoxb-) for better security and granular permissions."
                )
            if not bot_channel:
                logger.warning("Slack plugin: Bot channel is required when using bot token, plugin will be disabled")
                return None
            if not CHANNEL_PATTERN.match(bot_channel):
                raise ConfigurationError(f"Slack plugin: Invalid channel ID format: {bot_channel}")

        for name in ("onStart", "onComplete", "onError"):
            channel = _section(config, name).get("channel")
            if channel and not CHANNEL_PATTERN.match(channel):
                raise ConfigurationError(f"Slack plugin: Invalid channel format in {name}: {channel}")
            if channel and not bot_token:
                logger.warning(
                    "Slack plugin: Per-event channel in '%s' requires bot token - will be ignored with webhook",
                    name,
                )

        use_threads = bot.get("useThreads")
        if use_threads is None:
            use_threads = config.get("useThreads")

        slack_config = cls(
            enabled=True,
            webhook=webhook,
            bot_token=bot_token,
            bot_channel=bot_channel,
            use_threads=_flag(use_threads, True),
            validate_on_startup=_flag(config.get("validateOnStartup"), True),
            fail_on_invalid_config=_flag(config.get("failOnInvalidConfig"), False),
            on_start=OnStartConfig.from_mapping(_section(config, "onStart")),
            on_complete=OnCompleteConfig.from_mapping(_section(config, "onComplete")),
            on_error=OnErrorConfig.from_mapping(_section(config, "onError")),
            on_progress=OnProgressConfig.from_mapping(_section(config, "onProgress")),
            reactions=ReactionsConfig.from_mapping(_section(config, "reactions")),
            platform=PlatformConfig.from_mapping(_section(config, "platform")),
            sentry=SentryConfig.from_mapping(_section(config, "sentry")),
        )
        logger.info("Slack plugin: Enabled with %s notifications", "Bot" if bot_token else "Webhook")
        return slack_config

    @classmethod
    def from_env(cls) -> Optional["SlackConfig"]:
        """Create config from environment variables."""
        slack: Dict[str, Any] = {}
        if os.getenv("SLACK_WEBHOOK_URL"):
            slack["webhook"] = {"url": os.getenv("SLACK_WEBHOOK_URL")}
        if os.getenv("SLACK_BOT_TOKEN"):
            slack["bot"] = {
                "token": os.getenv("SLACK_BOT_TOKEN"),
                "channel": os.getenv("SLACK_BOT_CHANNEL"),
                "useThreads": os.getenv("SLACK_USE_THREADS", "true"),
            }
        if os.getenv("SLACK_PROGRESS_INTERVAL"):
            slack["onProgress"] = {"enabled": True, "interval": os.getenv("SLACK_PROGRESS_INTERVAL")}
        if os.getenv("SLACK_REACTIONS"):
            slack["reactions"] = {"enabled": os.getenv("SLACK_REACTIONS")}
        if os.getenv("SENTRY_DSN"):
            slack["sentry"] = {
                "dsn": os.getenv("SENTRY_DSN"),
                "environment": os.getenv("SENTRY_ENVIRONMENT", "production"),
            }
        return cls.from_mapping({"slack": slack})

    @property
    def is_configured(self) -> bool:
        """Check if a delivery mode is available."""
        return self.enabled and bool(self.webhook or (self.bot_token and self.bot_channel))

    @property
    def is_bot(self) -> bool:
        return bool(self.bot_token)

    def create_sender(self, session=None):
        """
        Create the sender for the configured delivery mode.

        Args:
            session: Optional requests.Session (used by tests)
        """
        from .slack.bot import BotSlackSender
        from .slack.sender import WebhookSlackSender

        if not self.is_configured:
            raise RuntimeError("Cannot create sender: Slack plugin not configured")

        if self.bot_token:
            return BotSlackSender(self.bot_token, self.bot_channel, session=session)
        return WebhookSlackSender(self.webhook, session=session)

    def __repr__(self) -> str:
        return (
            f"SlackConfig(enabled={self.enabled}, "
            f"webhook={'***configured***' if self.webhook else None}, "
            f"bot_token={'***configured***' if self.bot_token else None}, "
            f"bot_channel={self.bot_channel!r}, use_threads={self.use_threads})"
        )
