from enum import Enum
from typing import Dict


class ReasonCode(Enum):
    NOT_MISSING = "NOT_MISSING"
    NOT_MISMATCHED = "NOT_MISMATCHED"
    ALREADY_LINKED = "ALREADY_LINKED"
    NO_COUNTERPART = "NO_COUNTERPART"
    NOTHING_TO_DELETE = "NOTHING_TO_DELETE"
    MAPPING_NOT_SAVED = "MAPPING_NOT_SAVED"
    NOT_PLACED = "NOT_PLACED"
    BATCH_ABORTED = "BATCH_ABORTED"
    OTHER = "OTHER"


def explain_reason(code: ReasonCode, context: Dict) -> str:
    templates = {
        ReasonCode.NOT_MISSING: "Ticket {ticket_id} has a counterpart or is excluded from the analysis; nothing to create.",
        ReasonCode.NOT_MISMATCHED: "Ticket {ticket_id} has no mismatched fields; nothing to sync.",
        ReasonCode.ALREADY_LINKED: "Ticket {ticket_id} is already linked to {counterpart_id}.",
        ReasonCode.NO_COUNTERPART: "No linked {platform} ticket for {ticket_id}.",
        ReasonCode.NOTHING_TO_DELETE: "Nothing to delete for {ticket_id} on {platform}.",
        ReasonCode.MAPPING_NOT_SAVED: "Created {counterpart_id} for {ticket_id} but the mapping could not be saved.",
        ReasonCode.NOT_PLACED: "Created {counterpart_id} for {ticket_id} but could not set its column or tags: {detail}.",
        ReasonCode.BATCH_ABORTED: "Batch aborted: {detail}.",
        ReasonCode.OTHER: "{detail}",
    }
    template = templates.get(code, templates[ReasonCode.OTHER])
    return template.format(**{'detail': '', **context})
