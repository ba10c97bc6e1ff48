"""Record types shared by the navigator, extractor and sync layers."""

from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

# Attribute keys that take part in change detection. Derived columns such as
# completion status depend on the current date and are left out on purpose.
CORE_ATTRIBUTE_KEYS = (
    "name",
    "property_type",
    "district",
    "address",
    "developer",
    "tenure",
    "total_units",
    "expected_top",
    "blocks_levels",
    "price_text",
    "size_text",
)


class SessionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {SessionStatus.STOPPED, SessionStatus.COMPLETED, SessionStatus.FAILED}


def _safe_status(value: Any) -> SessionStatus:
    try:
        return SessionStatus(value)
    except Exception:
        return SessionStatus.RUNNING


@dataclass
class ScrapeSession:
    id: str
    status: SessionStatus
    started_at: str
    ended_at: Optional[str] = None
    pid: Optional[int] = None

    @classmethod
    def new(cls, *, started_at: str, pid: Optional[int] = None) -> "ScrapeSession":
        return cls(
            id=uuid.uuid4().hex,
            status=SessionStatus.RUNNING,
            started_at=started_at,
            pid=pid,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScrapeSession":
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            status=_safe_status(data.get("status")),
            started_at=str(data.get("started_at") or ""),
            ended_at=data.get("ended_at"),
            pid=data.get("pid"),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "pid": self.pid,
        }


def canonical_identity_key(url: str) -> str:
    """Return the canonical form of a detail URL used for deduplication."""

    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/") or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))


@dataclass(frozen=True)
class ItemRef:
    page_index: int
    item_index: int
    name: str
    url: str


@dataclass
class UnitRow:
    unit_type: str
    bedrooms: Optional[int] = None
    has_study: bool = False
    has_flexi: bool = False
    is_penthouse: bool = False
    size_min: Optional[int] = None
    size_max: Optional[int] = None
    size_text: str = ""
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    price_text: str = ""
    available_units: Optional[int] = None
    total_units: Optional[int] = None
    availability_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImageAsset:
    label: str
    source_url: str
    unit_type: str = ""
    file_name: str = ""
    fetchable: bool = True
    local_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExtractedRecord:
    identity_key: str
    attributes: Dict[str, str] = field(default_factory=dict)
    unit_rows: List[UnitRow] = field(default_factory=list)
    images: List[ImageAsset] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.attributes.get("name", "")

    def snapshot(self) -> Dict[str, Any]:
        """Return the canonical content used for change detection."""

        return {
            "attributes": {key: self.attributes.get(key, "") for key in CORE_ATTRIBUTE_KEYS},
            "unit_rows": [row.to_dict() for row in self.unit_rows],
            "images": [[image.label, image.source_url] for image in self.images],
        }

    @property
    def snapshot_hash(self) -> str:
        encoded = json.dumps(self.snapshot(), sort_keys=True, ensure_ascii=False)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


__all__ = [
    "CORE_ATTRIBUTE_KEYS",
    "SessionStatus",
    "ScrapeSession",
    "canonical_identity_key",
    "ItemRef",
    "UnitRow",
    "ImageAsset",
    "ExtractedRecord",
]
