"""RentalCore: compliance ledger and booking engine for equipment rental."""

from rentalcore.audit.events import AuditActor, AuditEventType, RequestContext
from rentalcore.audit.service import AuditLogger, compute_event_hash
from rentalcore.booking.revenue import apply_discount, calculate
from rentalcore.common.hashing import canonical_json

__all__ = [
    "AuditActor",
    "AuditEventType",
    "RequestContext",
    "AuditLogger",
    "compute_event_hash",
    "apply_discount",
    "calculate",
    "canonical_json",
]
__version__ = "0.1.0"
