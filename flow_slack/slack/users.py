"""
Slack Mention Resolution

Rewrites ``<@Jane>`` and ``<!subteam^data-team>`` mentions to Slack IDs so
the mentioned people actually get notified.

User matching priority (first non-empty level wins):
    1. username (``name``)
    2. display name (``profile.display_name``)
    3. real name (``profile.real_name``)

Ambiguous or unknown names are left untouched. Deleted users never match.
The user and group lists are fetched at most once per resolver; a failed
fetch (missing ``users:read`` / ``usergroups:read`` scope, network error)
disables that kind of resolution for the rest of the run.
"""

import logging
import re
import threading
from typing import Any, Callable, Dict, List, Optional, Set

import requests

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api/"
USERS_PAGE_SIZE = 200

USER_MENTION_PATTERN = re.compile(r"<@([^>]+)>")
SUBTEAM_MENTION_PATTERN = re.compile(r"<!subteam\^([^|>]+)(?:\|[^>]*)?>")
USER_ID_PATTERN = re.compile(r"^[UW][A-Z0-9]+$")
SUBTEAM_ID_PATTERN = re.compile(r"^S[A-Z0-9]+$")


def is_slack_user_id(value: Optional[str]) -> bool:
    """``U…``/``W…`` followed by uppercase alphanumerics."""
    return bool(value) and bool(USER_ID_PATTERN.match(value))


def is_slack_subteam_id(value: Optional[str]) -> bool:
    """``S…`` followed by uppercase alphanumerics."""
    return bool(value) and bool(SUBTEAM_ID_PATTERN.match(value))


class SlackUserResolver:
    """
    Resolves display-name mentions to Slack IDs.

    Usage:
        resolver = SlackUserResolver(token)
        payload = resolver.resolve_payload(payload)
    """

    def __init__(
        self,
        bot_token: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10,
    ):
        self._bot_token = bot_token
        self._session = session or requests.Session()
        self._timeout = timeout

        self._users: Optional[List[Dict[str, Any]]] = None
        self._groups: Optional[List[Dict[str, Any]]] = None
        self._users_failed = False
        self._groups_failed = False
        self._user_lock = threading.Lock()
        self._group_lock = threading.Lock()
        self._warned: Set[str] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_text(self, text: Optional[str]) -> Optional[str]:
        """Replace resolvable mentions in ``text``; everything else is kept verbatim."""
        if not text:
            return text
        resolved = USER_MENTION_PATTERN.sub(self._replace_user, text)
        return SUBTEAM_MENTION_PATTERN.sub(self._replace_subteam, resolved)

    def resolve_payload(self, payload: Any) -> Any:
        """Return a copy of a message document with every string value resolved."""
        if isinstance(payload, str):
            return self.resolve_text(payload)
        if isinstance(payload, dict):
            return {key: self.resolve_payload(value) for key, value in payload.items()}
        if isinstance(payload, list):
            return [self.resolve_payload(item) for item in payload]
        return payload

    def resolve_user_id(self, name: str) -> Optional[str]:
        """
        Resolve a user name to a Slack user ID.

        Returns:
            The ID, or None if the name is unknown, ambiguous or the user
            list is unavailable
        """
        users = self._cached(kind="users")
        if users is None:
            return None

        matches = self._find_matching_users(users, name)
        if not matches:
            self._warn_once(f"Slack plugin: Could not resolve user mention '@{name}' - no matching user found")
            return None
        if len(matches) > 1:
            candidates = ", ".join(f"{u.get('name')} ({u.get('id')})" for u in matches)
            self._warn_once(
                f"Slack plugin: Ambiguous user mention '@{name}' matches multiple users: "
                f"{candidates}. Leaving unresolved."
            )
            return None

        user_id = matches[0].get("id")
        logger.debug("Slack plugin: Resolved '@%s' to user ID %s", name, user_id)
        return user_id

    def resolve_usergroup_id(self, name: str) -> Optional[str]:
        """Resolve a group name or handle to a Slack usergroup ID."""
        groups = self._cached(kind="groups")
        if groups is None:
            return None

        matches = [g for g in groups if g.get("name") == name or g.get("handle") == name]
        if not matches:
            self._warn_once(f"Slack plugin: Could not resolve subteam mention '^{name}' - no matching group found")
            return None
        if len(matches) > 1:
            candidates = ", ".join(f"{g.get('handle')} ({g.get('id')})" for g in matches)
            self._warn_once(
                f"Slack plugin: Ambiguous subteam mention '^{name}' matches multiple groups: "
                f"{candidates}. Leaving unresolved."
            )
            return None

        group_id = matches[0].get("id")
        logger.debug("Slack plugin: Resolved subteam '^%s' to group ID %s", name, group_id)
        return group_id

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _replace_user(self, match: "re.Match") -> str:
        name = match.group(1)
        if is_slack_user_id(name):
            return match.group(0)
        user_id = self.resolve_user_id(name)
        return f"<@{user_id}>" if user_id else match.group(0)

    def _replace_subteam(self, match: "re.Match") -> str:
        name = match.group(1)
        if is_slack_subteam_id(name):
            return match.group(0)
        group_id = self.resolve_usergroup_id(name)
        return f"<!subteam^{group_id}>" if group_id else match.group(0)

    @staticmethod
    def _find_matching_users(users: List[Dict[str, Any]], name: str) -> List[Dict[str, Any]]:
        active = [u for u in users if not u.get("deleted")]

        getters: List[Callable[[Dict[str, Any]], Any]] = [
            lambda u: u.get("name"),
            lambda u: (u.get("profile") or {}).get("display_name"),
            lambda u: (u.get("profile") or {}).get("real_name"),
        ]
        for getter in getters:
            matches = [u for u in active if getter(u) == name]
            if matches:
                return matches
        return []

    def _warn_once(self, message: str) -> None:
        if message not in self._warned:
            self._warned.add(message)
            logger.warning(message)

    # ------------------------------------------------------------------
    # Cached lists
    # ------------------------------------------------------------------

    def _cached(self, kind: str) -> Optional[List[Dict[str, Any]]]:
        if kind == "users":
            if self._users is not None:
                return self._users
            with self._user_lock:
                if self._users is None and not self._users_failed:
                    self._users = self.fetch_users()
                    self._users_failed = self._users is None
                return self._users

        if self._groups is not None:
            return self._groups
        with self._group_lock:
            if self._groups is None and not self._groups_failed:
                self._groups = self.fetch_usergroups()
                self._groups_failed = self._groups is None
            return self._groups

    def fetch_users(self) -> Optional[List[Dict[str, Any]]]:
        """
        Fetch all workspace users from ``users.list``, following cursors.

        Returns:
            List of user objects, or None on failure
        """
        users: List[Dict[str, Any]] = []
        cursor = None

        try:
            while True:
                params: Dict[str, Any] = {"limit": USERS_PAGE_SIZE}
                if cursor:
                    params["cursor"] = cursor

                data = self._get("users.list", params)
                if data is None:
                    return None
                if not data.get("ok"):
                    if data.get("error") == "missing_scope":
                        logger.warning(
                            "Slack plugin: Cannot resolve user mentions - bot token is missing the 'users:read' scope"
                        )
                    else:
                        logger.warning(
                            "Slack plugin: Failed to fetch user list for mention resolution - API error: %s",
                            data.get("error"),
                        )
                    return None

                users.extend(data.get("members") or [])
                cursor = (data.get("response_metadata") or {}).get("next_cursor")
                if not cursor:
                    break

        except Exception as e:
            logger.warning("Slack plugin: Error fetching user list for mention resolution: %s", e)
            return None

        logger.debug("Slack plugin: Fetched %d users for mention resolution", len(users))
        return users

    def fetch_usergroups(self) -> Optional[List[Dict[str, Any]]]:
        """
        Fetch usergroups from ``usergroups.list``.

        Returns:
            List of usergroup objects, or None on failure
        """
        try:
            data = self._get("usergroups.list", {})
        except Exception as e:
            logger.warning("Slack plugin: Error fetching usergroups for mention resolution: %s", e)
            return None

        if data is None:
            return None
        if not data.get("ok"):
            if data.get("error") == "missing_scope":
                logger.warning(
                    "Slack plugin: Cannot resolve subteam mentions - bot token is missing the 'usergroups:read' scope"
                )
            else:
                logger.warning(
                    "Slack plugin: Failed to fetch usergroups for mention resolution - API error: %s",
                    data.get("error"),
                )
            return None

        groups = data.get("usergroups") or []
        logger.debug("Slack plugin: Fetched %d usergroups for mention resolution", len(groups))
        return groups

    def _get(self, method: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        response = self._session.get(
            SLACK_API_URL + method,
            params=params,
            headers={"Authorization": f"Bearer {self._bot_token}"},
            timeout=self._timeout,
        )
        if response.status_code != 200:
            logger.warning("Slack plugin: %s for mention resolution failed - HTTP %s", method, response.status_code)
            return None
        return response.json()
