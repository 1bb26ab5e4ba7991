"""Per-company settings kept in the local document.

Stored under document.settings[str(company_id)] so several companies can
share one database. Only fields that were set are written.
"""
from agenda import config
from agenda.logging_config import get_logger
from agenda.models import StorageDocument
from agenda.settings import CompanySettings
from agenda.storage import LocalDocumentStorage

logger = get_logger(__name__)


class CompanySettingsStore:
    """Reads and merges one company's persisted settings."""

    def __init__(self, storage: LocalDocumentStorage, company_id: int = config.DEFAULT_COMPANY_ID):
        self.storage = storage
        self.company_id = company_id

    @property
    def key(self) -> str:
        return str(self.company_id)

    def get(self) -> CompanySettings:
        raw = self.storage.load().settings.get(self.key) or {}
        return CompanySettings.model_validate(raw)

    def update(self, **changes) -> CompanySettings:
        """
        Merge changes into the stored settings. A None value unsets a field.

        Raises:
            ValueError: Unknown field
            pydantic.ValidationError: Invalid value
        """
        unknown = set(changes) - set(CompanySettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings fields: {sorted(unknown)}")

        def mutate(document: StorageDocument) -> CompanySettings:
            current = document.settings.get(self.key) or {}
            merged = CompanySettings.model_validate({**current, **changes})
            document.settings[self.key] = merged.model_dump(mode="json", exclude_none=True)
            return merged

        updated = self.storage.update(mutate)
        logger.info("company_settings_updated", company_id=self.company_id, fields=sorted(changes))
        return updated

    def remember_sheets_url(self, url: str) -> CompanySettings:
        return self.update(sheets_url=url)

    def forget_sheets_url(self) -> CompanySettings:
        return self.update(sheets_url=None)
