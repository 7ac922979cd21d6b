"""
Workflow Types

Read-only facts about a pipeline run, as supplied by the host engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

if TYPE_CHECKING:
    from .deeplink import DeepLinkProvider


class EventKind(Enum):
    """Notification event kinds."""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    PROGRESS = "progress"


@dataclass
class TaskStats:
    """Authoritative task counts reported by the engine."""

    succeeded: int = 0
    cached: int = 0
    failed: int = 0

    def summary(self) -> Optional[str]:
        """One-line summary, omitting zero counts."""
        parts = []
        if self.cached:
            parts.append(f"Cached: {self.cached}")
        if self.succeeded:
            parts.append(f"Completed: {self.succeeded}")
        if self.failed:
            parts.append(f"Failed: {self.failed}")
        return ", ".join(parts) if parts else None


@dataclass
class TraceRecord:
    """A single task trace, passed to per-task and error callbacks."""

    name: Optional[str] = None
    process: Optional[str] = None
    status: Optional[str] = None
    exit_code: Optional[int] = None

    @property
    def failed(self) -> bool:
        return (self.status or "").upper() in ("FAILED", "ABORTED")

    def get(self, key: str, default: Any = None) -> Any:
        """Mapping-style access, for engines that hand over plain records."""
        return getattr(self, key, default)


@dataclass
class WorkflowMetadata:
    """Run metadata."""

    run_name: Optional[str] = None
    script_name: Optional[str] = None
    run_id: Optional[str] = None
    command_line: Optional[str] = None
    work_dir: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    success: bool = False
    error_message: Optional[str] = None
    stats: Optional[TaskStats] = None

    @property
    def duration_seconds(self) -> float:
        """Run duration in seconds (up to now while still running)."""
        if self.started_at is None:
            return 0.0
        end = self.ended_at or datetime.now(self.started_at.tzinfo)
        return max((end - self.started_at).total_seconds(), 0.0)

    @property
    def duration_str(self) -> str:
        """Human-readable duration."""
        return format_duration(self.duration_seconds)


@dataclass
class WorkflowSession:
    """What the engine hands to the observer at flow creation."""

    config: Mapping[str, Any] = field(default_factory=dict)
    metadata: WorkflowMetadata = field(default_factory=WorkflowMetadata)
    deep_link_provider: Optional["DeepLinkProvider"] = None

    def to_dict(self) -> Dict[str, Any]:
        """Summary for logging and error-tracking context."""
        return {
            "run_name": self.metadata.run_name,
            "run_id": self.metadata.run_id,
            "script_name": self.metadata.script_name,
            "work_dir": self.metadata.work_dir,
        }


def format_duration(seconds: float) -> str:
    """
    Format a duration for display.

    Examples: ``450ms``, ``12.5s``, ``5m 3s``, ``1h 1m 1s``.
    """
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    mins, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {mins}m {secs}s"
    return f"{mins}m {secs}s"
