"""Database models for the Automail engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.user import User
from db.models.contact import Contact
from db.models.tag import Tag, ContactTag
from db.models.email_template import EmailTemplate
from db.models.sender_identity import SenderIdentity
from db.models.vault_key import VaultKey
from db.models.webhook_key import WebhookKey
from db.models.automation import Automation
from db.models.queue_job import QueueJob

__all__ = [
    "User",
    "Contact",
    "Tag",
    "ContactTag",
    "EmailTemplate",
    "SenderIdentity",
    "VaultKey",
    "WebhookKey",
    "Automation",
    "QueueJob",
]
