"""Constants and enums for the Automail engine."""

from enum import Enum


class JobStatus(str, Enum):
    """Queue job status.

    ``in_progress`` is only held while a scheduler invocation owns the
    lease on a job.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class AutomationKind(str, Enum):
    """Automation flavour."""

    AUTOMATION = "automation"
    CAMPAIGN = "campaign"


class AutomationStatus(str, Enum):
    """Automation and campaign lifecycle status."""

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    COMPLETED = "completed"


class TriggerType(str, Enum):
    """Workflow trigger kind."""

    CONTACT_ADDED = "contact_added"
    TAG_ADDED = "tag_added"
    EVENT = "event"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class TriggerScope(str, Enum):
    """How often one contact may enter an automation."""

    UNLIMITED = "unlimited"
    ONCE_PER_CONTACT = "once_per_contact"


class StepType(str, Enum):
    """Workflow step type."""

    DELAY = "delay"
    SEND_EMAIL = "send_email"
    ADD_TAG = "add_tag"


class DelayUnit(str, Enum):
    """Delay step time unit."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class ContactStatus(str, Enum):
    """Contact subscription status."""

    ACTIVE = "active"
    UNSUBSCRIBED = "unsubscribed"
    BOUNCED = "bounced"


class SegmentType(str, Enum):
    """Campaign audience segment type."""

    ALL = "all"
    TAG = "tag"


class CredentialProvider(str, Enum):
    """Third-party providers whose keys live in the vault."""

    RESEND = "resend"
