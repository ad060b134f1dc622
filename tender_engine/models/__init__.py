# importing this package registers every table on Base.metadata
from tender_engine.models.tender import Tender
from tender_engine.models.tender_invitation import TenderInvitation
from tender_engine.models.tender_bookmark import TenderBookmark
from tender_engine.models.proposal import Proposal
from tender_engine.models.event_log import EventLog
from tender_engine.models.idempotency_key import IdempotencyKeyRecord

__all__ = [
    "Tender",
    "TenderInvitation",
    "TenderBookmark",
    "Proposal",
    "EventLog",
    "IdempotencyKeyRecord",
]
