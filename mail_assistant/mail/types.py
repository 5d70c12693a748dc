"""Data types shared across the mailbox client, ingestor and router."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class IntentKind(str, Enum):
    """Coarse category assigned to a message before any AI processing.

    The ingestor only ever produces ADMIN_COMMAND or GENERAL; work reports and
    schedule replies are recognised later by the model through actions.
    """

    ADMIN_COMMAND = "admin_command"
    WORK_REPORT = "work_report"
    SCHEDULE_RESPONSE = "schedule_response"
    GENERAL = "general"


@dataclass(frozen=True)
class IncomingMessage:
    """One message fetched from the mailbox.

    Fields populated by the parser:
        message_id, uid, sender, sender_address, recipients, subject, body,
        received_at, in_reply_to, references, is_reply

    Fields set by classification (a new instance is created, never mutated):
        intent_kind, user_id
    """

    message_id: str
    sender: str
    sender_address: str
    subject: str
    body: str
    received_at: datetime
    uid: str | None = None
    recipients: list[str] = field(default_factory=list)
    in_reply_to: str | None = None
    references: list[str] = field(default_factory=list)
    is_reply: bool = False
    intent_kind: IntentKind = IntentKind.GENERAL
    user_id: str | None = None  # None → sender is not in the directory
