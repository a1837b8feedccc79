"""Workflow definitions: triggers and the closed set of step variants.

Raw ``workflow_config`` JSON saved by the sequence builder is resolved into
frozen dataclasses exactly once, when a job's steps are loaded. Everything
downstream (the interpreter, the executor) only ever sees these variants.

Definition schema (``Automation.workflow_config``):
{
    "trigger": {
        "type": "tag_added",
        "config": {"tag": "vip"},
        "required_tag": ["customer"],
        "scope": "once_per_contact"
    },
    "steps": [
        {"type": "delay", "config": {"amount": 2, "unit": "days"}},
        {"type": "send_email", "config": {"template_id": "...", "sender_id": "..."}},
        {"type": "add_tag", "config": {"tag": "nurtured"}}
    ]
}
"""

import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from core.constants import DelayUnit, StepType, TriggerScope, TriggerType
from core.exceptions import StepConfigError


# ─── Steps ────────────────────────────────────────────────────


@dataclass(frozen=True)
class DelayStep:
    """Wait ``amount`` units before the next step becomes due."""

    amount: int
    unit: DelayUnit

    @property
    def type(self) -> StepType:
        return StepType.DELAY


@dataclass(frozen=True)
class SendEmailStep:
    """Send a template to the job's contact."""

    template_id: Optional[str]
    sender_id: Optional[str] = None

    @property
    def type(self) -> StepType:
        return StepType.SEND_EMAIL


@dataclass(frozen=True)
class AddTagStep:
    """Attach a tag (created on demand) to the job's contact."""

    tag_name: str

    @property
    def type(self) -> StepType:
        return StepType.ADD_TAG


Step = Union[DelayStep, SendEmailStep, AddTagStep]

_LEADING_INT = re.compile(r"^\s*(\d+)")

_UNIT_ALIASES = {
    "minute": DelayUnit.MINUTES,
    "min": DelayUnit.MINUTES,
    "mins": DelayUnit.MINUTES,
    "hour": DelayUnit.HOURS,
    "hr": DelayUnit.HOURS,
    "hrs": DelayUnit.HOURS,
    "day": DelayUnit.DAYS,
}


def coerce_amount(raw: Any) -> int:
    """Coerce a delay amount to a positive integer, falling back to 1.

    Accepts ints, floats (truncated) and strings with a leading integer
    such as ``"3"`` or ``"3 days"``.
    """
    if isinstance(raw, bool) or raw is None:
        return 1
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float):
        value = int(raw)
    else:
        match = _LEADING_INT.match(str(raw))
        if not match:
            return 1
        value = int(match.group(1))
    return value if value > 0 else 1


def coerce_unit(raw: Any) -> DelayUnit:
    """Coerce a delay unit, defaulting to days when missing or unknown."""
    if not raw:
        return DelayUnit.DAYS
    text = str(raw).strip().lower()
    try:
        return DelayUnit(text)
    except ValueError:
        return _UNIT_ALIASES.get(text, DelayUnit.DAYS)


def _step_config(raw: dict) -> dict:
    # Older rows keep fields next to "type" instead of under "config".
    config = raw.get("config")
    if not isinstance(config, dict):
        config = {}
    merged = {k: v for k, v in raw.items() if k not in ("config", "type", "id")}
    merged.update(config)
    return merged


def _first(config: dict, *keys: str) -> Any:
    for key in keys:
        value = config.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_step(raw: Any, index: int = 0) -> Step:
    """Resolve one raw step into its variant.

    Raises:
        StepConfigError: Unknown step type or an ``add_tag`` with no tag
    """
    if not isinstance(raw, dict):
        raise StepConfigError(f"Step {index} is not an object")

    step_type = raw.get("type")
    config = _step_config(raw)

    if step_type == StepType.DELAY.value:
        return DelayStep(
            amount=coerce_amount(_first(config, "amount", "value")),
            unit=coerce_unit(config.get("unit")),
        )

    if step_type == StepType.SEND_EMAIL.value:
        template_id = _first(config, "template_id", "templateId")
        sender_id = _first(config, "sender_id", "senderId")
        return SendEmailStep(
            template_id=str(template_id) if template_id is not None else None,
            sender_id=str(sender_id) if sender_id is not None else None,
        )

    if step_type == StepType.ADD_TAG.value:
        tag = _first(config, "tag", "tag_name", "tagName")
        tag_name = str(tag).strip() if tag is not None else ""
        if not tag_name:
            raise StepConfigError(f"add_tag step {index} has no tag")
        return AddTagStep(tag_name=tag_name)

    raise StepConfigError(f"Unknown step type '{step_type}'")


def parse_steps(raw_steps: Any) -> tuple[Step, ...]:
    """Resolve a raw step list. ``None`` is an empty workflow."""
    if raw_steps is None:
        return ()
    if not isinstance(raw_steps, (list, tuple)):
        raise StepConfigError("Workflow steps must be a list")
    return tuple(parse_step(raw, i) for i, raw in enumerate(raw_steps))


# ─── Triggers ─────────────────────────────────────────────────

_TRIGGER_ALIASES = {
    "custom_webhook": TriggerType.WEBHOOK,
    "webhook_received": TriggerType.WEBHOOK,
    "form_submitted": TriggerType.EVENT,
    "custom_event": TriggerType.EVENT,
}


def _as_tags(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        return ()
    return tuple(str(t).strip() for t in raw if t is not None and str(t).strip())


def _trigger_kind(raw: Any) -> Optional[TriggerType]:
    if not raw:
        return None
    text = str(raw).strip().lower()
    try:
        return TriggerType(text)
    except ValueError:
        return _TRIGGER_ALIASES.get(text)


@dataclass(frozen=True)
class TriggerSpec:
    """What enrolls a contact into an automation.

    Attributes:
        kind: Trigger type
        tags: For ``tag_added``, the tags that fire it (empty = any tag)
        event_name: For ``event``, the event name that fires it
        required_tags: Contact must carry every one of these to enroll
        scope: ``once_per_contact`` blocks re-enrollment
    """

    kind: TriggerType
    tags: tuple[str, ...] = ()
    event_name: Optional[str] = None
    required_tags: tuple[str, ...] = ()
    scope: TriggerScope = TriggerScope.UNLIMITED

    @property
    def tag(self) -> Optional[str]:
        return self.tags[0] if self.tags else None

    def matches(
        self,
        kind: TriggerType,
        event_name: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> bool:
        """Whether an occurrence of ``kind`` fires this trigger."""
        if kind != self.kind:
            return False
        if kind == TriggerType.TAG_ADDED and self.tags:
            return tag is not None and tag in self.tags
        if kind == TriggerType.EVENT:
            return bool(event_name) and event_name == self.event_name
        return True


def parse_trigger(raw: Any, trigger_type: Optional[str] = None) -> TriggerSpec:
    """Resolve a trigger config.

    ``trigger_type`` is the automation's ``trigger_type`` column and wins
    over whatever the JSON says. Unrecognised kinds become ``manual`` so
    they never fire automatically.
    """
    raw = raw if isinstance(raw, dict) else {}
    config = raw.get("config") if isinstance(raw.get("config"), dict) else {}

    kind = (
        _trigger_kind(trigger_type)
        or _trigger_kind(raw.get("type"))
        or _trigger_kind(raw.get("event"))
        or TriggerType.MANUAL
    )

    tags: tuple[str, ...] = ()
    event_name = None
    if kind == TriggerType.TAG_ADDED:
        tags = _as_tags(_first(config, "tag", "tags") or raw.get("tag_filter") or raw.get("value"))
    elif kind == TriggerType.EVENT:
        event = _first(config, "event", "event_name") or raw.get("value")
        # In the builder layout "event" holds the trigger kind, not the event name.
        if event is None and _trigger_kind(raw.get("event")) is None:
            event = raw.get("event")
        event_name = str(event).strip() if event else None

    scope_raw = raw.get("scope") or config.get("scope")
    try:
        scope = TriggerScope(scope_raw) if scope_raw else TriggerScope.UNLIMITED
    except ValueError:
        scope = TriggerScope.UNLIMITED

    return TriggerSpec(
        kind=kind,
        tags=tags,
        event_name=event_name,
        required_tags=_as_tags(
            raw.get("required_tag") or raw.get("required_tags") or config.get("required_tags")
        ),
        scope=scope,
    )


def raw_steps_of(workflow_config: Optional[dict]) -> list:
    """The unparsed step list of a ``workflow_config`` blob."""
    steps = (workflow_config or {}).get("steps")
    return list(steps) if isinstance(steps, (list, tuple)) else []
