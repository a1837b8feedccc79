"""Step interpreter: the pure core of the engine.

Given a job's resolved steps, its current state and the current time,
``decide`` says what happens next. It performs no I/O; the side effect it
names (if any) is carried out by ``workflow.effects.StepExecutor`` and the
resulting transition is persisted by ``services.queue_store.QueueStore``.

    Pending(i), i >= len(steps)      -> Complete
    Pending(i), steps[i] is delay    -> Advance(i + 1, now + delay, None)
    Pending(i), steps[i] other       -> Advance(i + 1, now, steps[i])

Advancing past the last step leaves the job pending; it completes on the
next pass that picks it up.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence, Union

from core.constants import DelayUnit, JobStatus
from core.exceptions import StepConfigError
from workflow.definition import AddTagStep, DelayStep, SendEmailStep, Step


# ─── Job state ────────────────────────────────────────────────


@dataclass(frozen=True)
class Pending:
    """Waiting for (or leased for) execution of ``steps[step_index]``."""

    step_index: int

    def to_columns(self, payload: Optional[dict] = None) -> dict:
        return {
            "status": JobStatus.PENDING.value,
            "payload": {**(payload or {}), "step_index": self.step_index},
        }


@dataclass(frozen=True)
class Completed:
    def to_columns(self, payload: Optional[dict] = None) -> dict:
        return {"status": JobStatus.COMPLETED.value, "payload": dict(payload or {})}


@dataclass(frozen=True)
class Failed:
    reason: str

    def to_columns(self, payload: Optional[dict] = None) -> dict:
        return {
            "status": JobStatus.FAILED.value,
            "payload": dict(payload or {}),
            "error_message": self.reason,
        }


JobState = Union[Pending, Completed, Failed]


def coerce_step_index(raw: Any) -> int:
    """Read ``payload.step_index``; absent or garbage means the first step."""
    if isinstance(raw, bool):
        return 0
    try:
        index = int(raw)
    except (TypeError, ValueError):
        return 0
    return max(index, 0)


def job_state_from_row(
    status: str,
    payload: Optional[dict],
    error_message: Optional[str] = None,
) -> JobState:
    """Convert queue row columns into a ``JobState``.

    ``in_progress`` is a lease, not a state of the workflow: a leased job is
    still ``Pending`` at its stored index.
    """
    if status == JobStatus.COMPLETED.value:
        return Completed()
    if status == JobStatus.FAILED.value:
        return Failed(error_message or "")
    return Pending(coerce_step_index((payload or {}).get("step_index")))


# ─── Decisions ────────────────────────────────────────────────


@dataclass(frozen=True)
class Complete:
    pass


@dataclass(frozen=True)
class Advance:
    """Move the cursor to ``next_index`` and make the job due at ``next_execute_at``.

    ``side_effect`` is the step to perform before the transition is
    persisted; ``None`` for delays.
    """

    next_index: int
    next_execute_at: datetime
    side_effect: Optional[Union[SendEmailStep, AddTagStep]] = None


Decision = Union[Complete, Advance]

DELAY_UNITS = {
    DelayUnit.MINUTES: timedelta(minutes=1),
    DelayUnit.HOURS: timedelta(hours=1),
    DelayUnit.DAYS: timedelta(days=1),
}


def delay_for(step: DelayStep) -> timedelta:
    return DELAY_UNITS[step.unit] * step.amount


def decide(steps: Sequence[Step], state: JobState, now: datetime) -> Decision:
    """Decide the next transition for a pending job.

    Raises:
        ValueError: ``state`` is terminal
        StepConfigError: ``steps`` contains something that is not a step
    """
    if not isinstance(state, Pending):
        raise ValueError(f"Cannot advance a job in state {state!r}")

    index = state.step_index
    if index >= len(steps):
        return Complete()

    step = steps[index]
    if isinstance(step, DelayStep):
        return Advance(next_index=index + 1, next_execute_at=now + delay_for(step))
    if isinstance(step, (SendEmailStep, AddTagStep)):
        return Advance(next_index=index + 1, next_execute_at=now, side_effect=step)

    raise StepConfigError(f"Unsupported step {step!r}")
