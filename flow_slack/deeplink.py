"""
Deep Link Providers

Look up the URL of a run's page on the monitoring platform. The URL is
populated by another component at an unspecified time, so lookups are
late-bound and may return None on the first attempts.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import urljoin

from .config import DEFAULT_PLATFORM_URL

logger = logging.getLogger(__name__)


class DeepLinkProvider(ABC):
    """Port for deep-link enrichment."""

    @abstractmethod
    def try_get_deep_link(self, run_id: Optional[str]) -> Optional[str]:
        """Return the run page URL, or None if not (yet) available."""
        pass


class NullDeepLinkProvider(DeepLinkProvider):
    """No monitoring platform attached."""

    def try_get_deep_link(self, run_id: Optional[str]) -> Optional[str]:
        return None


class AttributeDeepLinkProvider(DeepLinkProvider):
    """
    Read the watch URL from an attribute of another component.

    The attribute is read at call time (it is typically filled in after the
    run has been registered with the platform). Callables are invoked with
    the run id. Relative paths are joined onto the platform base URL.

    Usage:
        provider = AttributeDeepLinkProvider(tower_client, attribute="watch_url")
        url = provider.try_get_deep_link(run_id)
    """

    def __init__(
        self,
        source: Any,
        attribute: str = "watch_url",
        base_url: str = DEFAULT_PLATFORM_URL,
    ):
        self.source = source
        self.attribute = attribute
        self.base_url = base_url

    def try_get_deep_link(self, run_id: Optional[str]) -> Optional[str]:
        if self.source is None:
            return None

        try:
            value = getattr(self.source, self.attribute, None)
            if callable(value):
                value = value(run_id)
        except Exception as e:
            logger.debug("Slack plugin: Unable to read deep link from %s: %s", type(self.source).__name__, e)
            return None

        if not value:
            return None

        url = str(value)
        if not url.startswith(("http://", "https://")):
            url = urljoin(self.base_url.rstrip("/") + "/", url.lstrip("/"))
        return url
