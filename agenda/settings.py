"""
Runtime settings for the appointment calendar.

Supports:
- Slot windows per weekday and slot interval
- Backend selection (remote spreadsheet, local document, Google Calendar)
- Booking policy (per store or global)
- Environment overrides (AGENDA_* variables, .env files)
"""
import os
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from agenda import config
from agenda.logging_config import LOG_LEVELS
from agenda.models import BackendKind, SlotPolicy, format_minutes, to_minutes


class TimeWindow(BaseModel):
    """Opening window for one day, both ends inclusive."""
    start: str = Field(..., description="HH:MM")
    end: str = Field(..., description="HH:MM")

    @field_validator("start", "end")
    @classmethod
    def validate_hhmm(cls, v):
        return format_minutes(to_minutes(v))

    @model_validator(mode="after")
    def check_order(self):
        if to_minutes(self.start) > to_minutes(self.end):
            raise ValueError(f"Window start {self.start} is after end {self.end}")
        return self

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end)


class ScheduleConfig(BaseModel):
    """Slot rules: interval plus opening windows keyed by weekday name."""
    interval_minutes: int = Field(default=config.SLOT_INTERVAL_MINUTES, gt=0, le=240)
    windows: Dict[str, List[TimeWindow]] = Field(
        default_factory=lambda: {day: [TimeWindow(**w) for w in ws] for day, ws in config.SLOT_WINDOWS.items()}
    )

    @field_validator("windows")
    @classmethod
    def validate_windows(cls, v):
        """Weekday names must be known; windows sorted and non-overlapping."""
        normalized = {}
        for day, day_windows in v.items():
            key = day.strip().lower()
            if key not in config.WEEKDAYS:
                raise ValueError(f"Unknown weekday '{day}'")
            ordered = sorted(day_windows, key=lambda w: w.start_minutes)
            for previous, current in zip(ordered, ordered[1:]):
                if current.start_minutes <= previous.end_minutes:
                    raise ValueError(
                        f"Overlapping windows on {key}: "
                        f"{previous.start}-{previous.end} and {current.start}-{current.end}"
                    )
            normalized[key] = ordered
        return normalized

    def windows_for(self, weekday: str) -> List[TimeWindow]:
        """Windows for a weekday name; missing days are closed."""
        return self.windows.get(weekday, [])


class AppSettings(BaseModel):
    """Complete runtime configuration."""
    backend: BackendKind = Field(default=BackendKind.REMOTE)
    sheets_url: Optional[str] = Field(default=None, description="Deployed spreadsheet script URL")
    calendar_id: str = Field(default="primary")
    calendar_token: Optional[str] = Field(default=None, description="OAuth bearer token")
    slot_policy: SlotPolicy = Field(default=SlotPolicy(config.DEFAULT_SLOT_POLICY))
    sync_interval_seconds: float = Field(default=config.SYNC_INTERVAL_SECONDS, gt=0)
    database_url: str = Field(default=config.DATABASE_URL)
    storage_key: str = Field(default=config.STORAGE_KEY, min_length=1)
    log_level: str = Field(default="INFO")
    company_id: int = Field(default=config.DEFAULT_COMPANY_ID)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level '{v}'")
        return level


class CompanySettings(BaseModel):
    """
    Per-company settings persisted in the local document.

    Kept across restarts: the spreadsheet script URL chosen at connect time
    and schedule overrides. Unset fields fall back to the runtime settings.
    """
    sheets_url: Optional[str] = Field(default=None, description="Last connected spreadsheet script URL")
    interval_minutes: Optional[int] = Field(default=None, gt=0, le=240)
    windows: Optional[Dict[str, List[TimeWindow]]] = Field(default=None)

    @field_validator("windows")
    @classmethod
    def validate_windows(cls, v):
        if v is None:
            return v
        return ScheduleConfig(windows=v).windows

    def apply(self, settings: AppSettings) -> AppSettings:
        """Runtime settings with these overrides on top."""
        updates = {}
        if self.sheets_url:
            updates["sheets_url"] = self.sheets_url
        if self.interval_minutes is not None or self.windows is not None:
            updates["schedule"] = ScheduleConfig(
                interval_minutes=self.interval_minutes or settings.schedule.interval_minutes,
                windows=self.windows if self.windows is not None else settings.schedule.windows,
            )
        if not updates:
            return settings
        return settings.model_copy(update=updates)


def load_settings(env: Optional[Mapping[str, str]] = None) -> AppSettings:
    """
    Build settings from environment variables.

    Args:
        env: Mapping to read instead of os.environ (tests). When omitted,
             a .env file in the working directory is loaded first.

    Returns:
        Validated AppSettings

    Raises:
        pydantic.ValidationError: If a value is malformed
    """
    if env is None:
        load_dotenv()
        env = os.environ

    values = {}
    mapping = {
        "AGENDA_BACKEND": "backend",
        "AGENDA_SHEETS_URL": "sheets_url",
        "AGENDA_CALENDAR_ID": "calendar_id",
        "AGENDA_CALENDAR_TOKEN": "calendar_token",
        "AGENDA_SLOT_POLICY": "slot_policy",
        "AGENDA_SYNC_INTERVAL": "sync_interval_seconds",
        "AGENDA_DATABASE_URL": "database_url",
        "AGENDA_STORAGE_KEY": "storage_key",
        "AGENDA_LOG_LEVEL": "log_level",
        "AGENDA_COMPANY_ID": "company_id",
    }
    for env_name, field_name in mapping.items():
        raw = env.get(env_name)
        if raw not in (None, ""):
            values[field_name] = raw

    interval = env.get("AGENDA_SLOT_INTERVAL")
    if interval:
        values["schedule"] = ScheduleConfig(interval_minutes=interval)

    return AppSettings(**values)
