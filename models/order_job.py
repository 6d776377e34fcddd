"""
Order job data models.

An OrderJob is one orchestrated unit: a stock order or an AI generation
job, tracked from submission to a terminal state.

Thread Safety:
    - OrderJob is a frozen dataclass; each transition produces a new snapshot
    - The registry swaps snapshots under its lock, so readers never see a
      half-applied transition
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union
from uuid import uuid4

from core.exceptions import ErrorKind
from models.identifier import ParsedIdentifier
from models.upstream import DownloadRef


class JobKind(Enum):
    """What the job fulfils."""

    STOCK_ORDER = "stock_order"
    AI_GENERATION = "ai_generation"


class JobState(Enum):
    """
    Lifecycle state of an order job.

    Lifecycle:
        CREATED -> SUBMITTED -> POLLING -> (READY | FAILED | CANCELLED)
    """

    CREATED = "created"
    """Registered locally, upstream order not yet created."""

    SUBMITTED = "submitted"
    """Upstream accepted the order; polling about to start."""

    POLLING = "polling"
    """Waiting for the upstream to finish."""

    READY = "ready"
    """Finished; result holds the download reference."""

    FAILED = "failed"
    """Finished unsuccessfully; failure holds the error kind."""

    CANCELLED = "cancelled"
    """Cancelled by the user; distinct from FAILED for billing purposes."""

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.READY, JobState.FAILED, JobState.CANCELLED})

# Allowed transitions; any state may also move to itself only when POLLING
# (progress updates).
ALLOWED_TRANSITIONS: Dict[JobState, frozenset] = {
    JobState.CREATED: frozenset({JobState.SUBMITTED, JobState.FAILED, JobState.CANCELLED}),
    JobState.SUBMITTED: frozenset({JobState.POLLING, JobState.FAILED, JobState.CANCELLED}),
    JobState.POLLING: frozenset({
        JobState.POLLING, JobState.READY, JobState.FAILED, JobState.CANCELLED,
    }),
    JobState.READY: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class AIPrompt:
    """Input of an AI generation job."""

    prompt: str
    style: Optional[str] = None
    size: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"prompt": self.prompt, "style": self.style, "size": self.size}


@dataclass(frozen=True)
class OrderJob:
    """
    Snapshot of one orchestrated order or generation job.

    Only the orchestrator creates new snapshots (via transition()); callers
    receive snapshots and may hold them freely.
    """

    handle: str
    """Opaque local handle returned to callers."""

    kind: JobKind
    state: JobState
    input: Union[ParsedIdentifier, AIPrompt]
    created_at: datetime

    upstream_handle: Optional[str] = None
    """order_id/task_id or job_id assigned by the upstream."""

    last_polled_at: Optional[datetime] = None
    attempts: int = 0
    """Status polls performed so far (non-decreasing)."""

    progress: Optional[int] = None
    """0-100 when the upstream reports it."""

    result: Optional[DownloadRef] = None
    failure: Optional[ErrorKind] = None
    failure_message: str = ""
    finished_at: Optional[datetime] = None

    @classmethod
    def create_stock_order(cls, identifier: ParsedIdentifier) -> "OrderJob":
        """New job in CREATED state for a valid identifier."""
        return cls(
            handle=uuid4().hex,
            kind=JobKind.STOCK_ORDER,
            state=JobState.CREATED,
            input=identifier,
            created_at=datetime.now(timezone.utc),
        )

    @classmethod
    def create_ai_generation(cls, prompt: AIPrompt) -> "OrderJob":
        """New job in CREATED state for an AI prompt."""
        return cls(
            handle=uuid4().hex,
            kind=JobKind.AI_GENERATION,
            state=JobState.CREATED,
            input=prompt,
            created_at=datetime.now(timezone.utc),
        )

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def dedupe_key(self) -> Tuple[str, ...]:
        """Key used to suppress duplicate live submissions."""
        if isinstance(self.input, ParsedIdentifier):
            site = self.input.site.value if self.input.site else ""
            return (self.kind.value, site, self.input.id)
        return (self.kind.value, self.input.prompt, self.input.style or "", self.input.size or "")

    def can_transition_to(self, state: JobState) -> bool:
        return state in ALLOWED_TRANSITIONS[self.state]

    def transition(self, state: JobState, **changes: Any) -> "OrderJob":
        """
        Return the snapshot after moving to state.

        Raises:
            ValueError: If the transition is not allowed (e.g. out of a
                terminal state)
        """
        if not self.can_transition_to(state):
            raise ValueError(
                f"Illegal transition {self.state.value} -> {state.value} for job {self.handle[:8]}"
            )
        if state.is_terminal and "finished_at" not in changes:
            changes["finished_at"] = datetime.now(timezone.utc)
        if "attempts" in changes and changes["attempts"] < self.attempts:
            raise ValueError("attempts cannot decrease")
        return replace(self, state=state, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON responses and event streams."""
        return {
            "handle": self.handle,
            "kind": self.kind.value,
            "state": self.state.value,
            "input": self.input.to_dict(),
            "upstream_handle": self.upstream_handle,
            "created_at": self.created_at.isoformat(),
            "last_polled_at": self.last_polled_at.isoformat() if self.last_polled_at else None,
            "attempts": self.attempts,
            "progress": self.progress,
            "result": self.result.to_dict() if self.result else None,
            "failure": self.failure.value if self.failure else None,
            "failure_message": self.failure_message,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
