"""Typed audit payloads.

Call sites build these dataclasses; the ledger only turns them into plain
dicts / JSON text when an event is persisted.
"""

from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import date
from enum import Enum
from typing import Any, Optional


class AuditEventType(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ARCHIVE = "ARCHIVE"
    SIGN = "SIGN"
    SYSTEM = "SYSTEM"
    SECURITY = "SECURITY"


@dataclass(frozen=True)
class AuditActor:
    """Who performed the action. user_id 0 is the system itself."""

    user_id: int = 0
    username: str = ""

    @property
    def display_name(self) -> str:
        return self.username or f"user_{self.user_id}"


SYSTEM_ACTOR = AuditActor(user_id=0, username="system")


@dataclass(frozen=True)
class RequestContext:
    ip_address: str = ""
    user_agent: str = ""
    session_id: str = ""


@dataclass
class DeviceAssignmentChange:
    job_id: str
    device_id: str
    custom_price: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    revenue: Optional[float] = None
    final_revenue: Optional[float] = None


@dataclass
class JobRevenueSnapshot:
    job_id: str
    revenue: float
    final_revenue: float
    discount: float
    discount_type: str


@dataclass
class ArchiveNotice:
    document_type: str
    archive_file: str
    data_hash: str
    signature_id: Optional[str] = None


@dataclass
class SecurityNotice:
    severity: str
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def requires_review(self) -> bool:
        return self.severity in ("high", "critical")


def to_plain(value: Any) -> Any:
    """Convert typed payloads into JSON-ready structures."""
    if value is None:
        return None
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, Enum):
        return value.value
    return value
