"""Domain models for the appointment calendar.

Pattern: pydantic models for validation, plus explicit mapping to the
spreadsheet wire record so the backend field names stay a contract:

    {id, date, time, client, phone, store, storeId, notes, created}
"""
import re
import uuid
from datetime import date as date_type, datetime, UTC
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from agenda import config

DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")


class SlotPolicy(str, Enum):
    """Which appointments occupy a time slot."""
    PER_STORE = "per_store"  # one appointment per date + time + store
    GLOBAL = "global"  # one appointment per date + time, any store


class BackendKind(str, Enum):
    """Appointment store backends."""
    REMOTE = "remote"  # spreadsheet script over HTTP
    LOCAL = "local"  # local persisted document
    CALENDAR = "calendar"  # Google Calendar events


def to_minutes(hhmm: str) -> int:
    """Convert 'HH:MM' into minutes since midnight."""
    match = TIME_PATTERN.match(hhmm.strip())
    if not match:
        raise ValueError(f"Invalid time '{hhmm}', expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time '{hhmm}', expected HH:MM")
    return hour * 60 + minute


def format_minutes(minutes: int) -> str:
    """Convert minutes since midnight into 'HH:MM'."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_date(value: Any) -> str:
    """
    Normalize a date cell into ISO 'YYYY-MM-DD'.

    Spreadsheets hand back dates as ISO datetimes ('2026-02-21T03:00:00.000Z');
    only the calendar date part is kept.
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date_type):
        return value.isoformat()
    text = str(value).strip()
    match = DATE_PATTERN.match(text)
    if not match:
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")
    normalized = "-".join(match.groups())
    date_type.fromisoformat(normalized)
    return normalized


def normalize_time(value: Any) -> str:
    """Normalize 'H:MM', 'HH:MM' or 'HH:MM:SS' into 'HH:MM'."""
    text = str(value).strip()
    if "T" in text:
        # ISO datetime from a time-formatted cell
        text = text.split("T", 1)[1][:5]
    return format_minutes(to_minutes(text))


def digits_only(value: Any) -> str:
    """Keep digits only (phone numbers are stored unformatted)."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return re.sub(r"\D", "", str(value))


def utc_now_iso() -> str:
    """Get current UTC timestamp as ISO string."""
    return datetime.now(UTC).isoformat()


def generate_appointment_id() -> int:
    """
    Generate a new appointment id.

    Random 53-bit integer so it survives JSON numbers and spreadsheet cells
    without precision loss. Callers may pre-supply an id to make a create
    retry idempotent.
    """
    return (uuid.uuid4().int >> 75) or 1


def default_store_name(store_id: int) -> str:
    return f"Loja {store_id}"


class Appointment(BaseModel):
    """One booked slot."""
    id: Optional[int] = Field(default=None, description="Globally unique id")
    date: str = Field(..., description="ISO date YYYY-MM-DD")
    time: str = Field(..., description="Time of day HH:MM")
    client_name: str = Field(..., min_length=1, max_length=200)
    client_phone: str = Field(default="", description="Digits only")
    store_id: int = Field(default=config.GENERAL_STORE_ID, ge=0)
    store_name: str = Field(default="")
    notes: str = Field(default="")
    created_at: Optional[str] = Field(default=None, description="Set once at creation")
    external_ref: Optional[str] = Field(default=None, description="External calendar event id")
    pending_sync: bool = Field(default=False, description="Written locally while remote was unreachable")

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v):
        return normalize_date(v)

    @field_validator("time", mode="before")
    @classmethod
    def validate_time(cls, v):
        return normalize_time(v)

    @field_validator("client_phone", mode="before")
    @classmethod
    def validate_phone(cls, v):
        return digits_only(v)

    @field_validator("client_name", "notes", "store_name", mode="before")
    @classmethod
    def strip_text(cls, v):
        return "" if v is None else str(v).strip()

    @property
    def month_key(self) -> str:
        """'YYYY-MM' prefix used for month filters."""
        return self.date[:7]

    def to_record(self) -> Dict[str, Any]:
        """Map to the spreadsheet wire record."""
        return {
            "id": self.id,
            "date": self.date,
            "time": self.time,
            "client": self.client_name,
            "phone": self.client_phone,
            "store": self.store_name or default_store_name(self.store_id),
            "storeId": self.store_id,
            "notes": self.notes,
            "created": self.created_at,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Appointment":
        """
        Build from a spreadsheet wire record.

        Accepts the older column names (clientName, clientPhone, storeName,
        createdAt) written by earlier versions of the sheet script.
        """
        raw_id = record.get("id")
        store_id = record.get("storeId")
        return cls(
            id=int(float(raw_id)) if raw_id not in (None, "") else None,
            date=record.get("date"),
            time=record.get("time"),
            client_name=record.get("client", record.get("clientName")) or "",
            client_phone=record.get("phone", record.get("clientPhone")),
            store_id=int(float(store_id)) if store_id not in (None, "") else config.GENERAL_STORE_ID,
            store_name=record.get("store", record.get("storeName")) or "",
            notes=record.get("notes") or "",
            created_at=record.get("created", record.get("createdAt")) or None,
        )

    def slot_key(self, policy: SlotPolicy) -> tuple:
        """Key under which this appointment occupies a slot."""
        if policy == SlotPolicy.PER_STORE:
            return (self.date, self.time, self.store_id)
        return (self.date, self.time)


class Store(BaseModel):
    """One retail location. Never hard-deleted, only deactivated."""
    id: int = Field(..., ge=0)
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(default="#999999", description="Display only")
    password: str = Field(default=config.DEFAULT_STORE_PASSWORD)
    active: bool = Field(default=True)
    company_id: int = Field(default=config.DEFAULT_COMPANY_ID)


class Client(BaseModel):
    """Client registry entry, scoped to one company."""
    id: int = Field(..., ge=1)
    company_id: int = Field(default=config.DEFAULT_COMPANY_ID)
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(default="", description="Digits only")
    email: str = Field(default="")
    cpf: str = Field(default="", description="Brazilian taxpayer id, digits only")
    notes: str = Field(default="")
    created_at: Optional[str] = Field(default=None)

    @field_validator("phone", "cpf", mode="before")
    @classmethod
    def validate_digits(cls, v):
        return digits_only(v)

    @field_validator("name", "email", "notes", mode="before")
    @classmethod
    def strip_text(cls, v):
        return "" if v is None else str(v).strip()


class BusyInterval(BaseModel):
    """Time range occupied by an event this system does not own."""
    start: datetime
    end: datetime
    summary: str = ""


class StorageDocument(BaseModel):
    """The single persisted local document."""
    stores: List[Store] = Field(default_factory=list)
    appointments: List[Appointment] = Field(default_factory=list)
    clients: List[Client] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict, description="Per-company settings keyed by company id")
