"""Configuration for the optical-shop appointment calendar.

All business defaults centralized here - modify as needed without touching code.
Runtime overrides come from AGENDA_* environment variables (see settings.py).
"""

# Stores seeded into the local document on first boot
SEED_STORES = [
    {"id": 1, "name": "Loja 1", "color": "#f44336"},
    {"id": 2, "name": "Loja 2", "color": "#4CAF50"},
    {"id": 3, "name": "Loja 3", "color": "#2196F3"},
    {"id": 4, "name": "Loja 4", "color": "#FF9800"},
    {"id": 5, "name": "Loja 5", "color": "#9C27B0"},
]

DEFAULT_STORE_PASSWORD = "1234"
DEFAULT_COMPANY_ID = 1

# Store id used for appointments not tied to a physical store
GENERAL_STORE_ID = 0

# Slot calendar: windows are inclusive at both ends
SLOT_INTERVAL_MINUTES = 30

SLOT_WINDOWS = {
    "monday": [{"start": "09:00", "end": "12:30"}, {"start": "14:00", "end": "18:00"}],
    "tuesday": [{"start": "09:00", "end": "12:30"}, {"start": "14:00", "end": "18:00"}],
    "wednesday": [{"start": "09:00", "end": "12:30"}, {"start": "14:00", "end": "18:00"}],
    "thursday": [{"start": "09:00", "end": "12:30"}, {"start": "14:00", "end": "18:00"}],
    "friday": [{"start": "14:00", "end": "17:30"}],
    "saturday": [{"start": "09:00", "end": "12:30"}],
    "sunday": [],
}

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

# Booking policy: "global" (one appointment per date+time across all stores)
# or "per_store" (one appointment per date+time+store)
DEFAULT_SLOT_POLICY = "global"

# Sync poller
SYNC_INTERVAL_SECONDS = 30

# Local persistence (single document under a fixed key)
DATABASE_URL = "sqlite:///agenda_otica.db"
STORAGE_KEY = "agenda_otica_db"

# Remote spreadsheet backend
HTTP_TIMEOUT_SECONDS = 15
HTTP_MAX_RETRIES = 3

# Google Calendar backend
CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_TIME_ZONE = "America/Sao_Paulo"
CALENDAR_EVENT_MINUTES = 30
CALENDAR_DAYS_BACK = 30
CALENDAR_DAYS_AHEAD = 90
CALENDAR_MAX_RESULTS = 500
CALENDAR_MARKER_KEY = "agendaOtica"

# Reference spreadsheet server (mock_sheets_api.py)
MOCK_SHEETS_PORT = 5050
MOCK_SHEETS_BASE_URL = f"http://localhost:{MOCK_SHEETS_PORT}/exec"
