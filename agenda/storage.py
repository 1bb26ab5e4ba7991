"""
Local document storage.

Handles:
- Loading/saving the single {stores, appointments, settings} document
- Seeding stores on first boot
- Migrations on load (default passwords, duplicate stores)

Pattern: thin wrapper around SQLAlchemy, one row per storage key. Every save
commits before returning, so local writes are durable immediately.
"""
import threading
from typing import Callable, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agenda import config
from agenda.database_models import Base, StoredDocument
from agenda.logging_config import get_logger
from agenda.models import StorageDocument, Store

logger = get_logger(__name__)


def seed_document() -> StorageDocument:
    """Initial document: the fixed store list, no appointments."""
    return StorageDocument(
        stores=[Store(**store) for store in config.SEED_STORES],
        appointments=[],
        settings={},
    )


def migrate_document(document: StorageDocument) -> bool:
    """
    Apply in-place migrations to a loaded document.

    - Stores saved without a password get the default one
    - Duplicate stores (same company_id and id) are dropped, first one wins

    Returns:
        True if the document changed and should be saved
    """
    changed = False

    for store in document.stores:
        if not store.password:
            store.password = config.DEFAULT_STORE_PASSWORD
            changed = True

    seen = set()
    unique = []
    for store in document.stores:
        key = (store.company_id, store.id)
        if key in seen:
            changed = True
            continue
        seen.add(key)
        unique.append(store)
    document.stores = unique

    return changed


class LocalDocumentStorage:
    """Persists the local document under a fixed key."""

    def __init__(self, database_url: str = config.DATABASE_URL, key: str = config.STORAGE_KEY):
        """
        Initialize storage with database connection.

        Args:
            database_url: SQLAlchemy connection string
            key: Storage key of the document row
        """
        engine_kwargs = {"pool_pre_ping": True}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
        self.engine = create_engine(database_url, **engine_kwargs)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.key = key
        self._lock = threading.RLock()

    def load(self) -> StorageDocument:
        """
        Load the document, seeding it on first boot.

        Returns:
            StorageDocument (migrated)
        """
        with self._lock:
            with self.SessionLocal() as db:
                row = db.get(StoredDocument, self.key)
                payload = row.payload if row else None

            if payload is None:
                document = seed_document()
                self.save(document)
                logger.info("storage_seeded", key=self.key, stores=len(document.stores))
                return document

            document = StorageDocument.model_validate_json(payload)
            if migrate_document(document):
                self.save(document)
                logger.info("storage_migrated", key=self.key)
            return document

    def save(self, document: StorageDocument) -> None:
        """Write the whole document and commit."""
        payload = document.model_dump_json()
        with self._lock:
            with self.SessionLocal() as db:
                row = db.get(StoredDocument, self.key)
                if row is None:
                    db.add(StoredDocument(key=self.key, payload=payload))
                else:
                    row.payload = payload
                db.commit()

    def update(self, mutate: Callable[[StorageDocument], Optional[object]]):
        """
        Load, mutate and save atomically with respect to this process.

        Args:
            mutate: Function changing the document in place; its return value
                    is passed through

        Returns:
            Whatever mutate returned
        """
        with self._lock:
            document = self.load()
            result = mutate(document)
            self.save(document)
            return result

    def reset(self) -> StorageDocument:
        """Replace the document with a fresh seed."""
        document = seed_document()
        self.save(document)
        return document
