"""Store directory and store login.

Store passwords are plaintext shared secrets compared by equality. Login is a
UI gate that picks the working store, not a security boundary.
"""
from typing import List, Optional

from agenda import config
from agenda.errors import InvalidStorePasswordError
from agenda.logging_config import get_logger
from agenda.models import Store, StorageDocument
from agenda.storage import LocalDocumentStorage

logger = get_logger(__name__)


class StoreNotFoundError(Exception):
    """Raised when a store id is not in the directory."""
    pass


class StoreDirectory:
    """Stores kept in the local document. Never hard-deleted, only deactivated."""

    def __init__(self, storage: LocalDocumentStorage, company_id: int = config.DEFAULT_COMPANY_ID):
        self.storage = storage
        self.company_id = company_id

    def list_stores(self, include_inactive: bool = False) -> List[Store]:
        """Stores of the current company, by id."""
        stores = [s for s in self.storage.load().stores if s.company_id == self.company_id]
        if not include_inactive:
            stores = [s for s in stores if s.active]
        return sorted(stores, key=lambda s: s.id)

    def get(self, store_id: int) -> Optional[Store]:
        for store in self.list_stores(include_inactive=True):
            if store.id == store_id:
                return store
        return None

    def add(self, name: str, color: str = "#999999", password: str = config.DEFAULT_STORE_PASSWORD) -> Store:
        """Add a store with the next free id."""
        def mutate(document: StorageDocument) -> Store:
            ids = [s.id for s in document.stores if s.company_id == self.company_id]
            store = Store(
                id=max(ids, default=0) + 1,
                name=name,
                color=color,
                password=password,
                company_id=self.company_id,
            )
            document.stores.append(store)
            return store

        store = self.storage.update(mutate)
        logger.info("store_added", store_id=store.id, name=store.name)
        return store

    def update(self, store_id: int, **changes) -> Store:
        """
        Change name, color, password or active flag.

        Raises:
            StoreNotFoundError: Unknown store id
            ValueError: Unknown field
        """
        allowed = {"name", "color", "password", "active"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown store fields: {sorted(unknown)}")

        def mutate(document: StorageDocument) -> Store:
            for index, store in enumerate(document.stores):
                if store.id == store_id and store.company_id == self.company_id:
                    updated = Store(**{**store.model_dump(), **changes})
                    document.stores[index] = updated
                    return updated
            raise StoreNotFoundError(f"Store {store_id} not found")

        store = self.storage.update(mutate)
        logger.info("store_updated", store_id=store_id, fields=sorted(changes))
        return store

    def deactivate(self, store_id: int) -> Store:
        """Soft delete: the store disappears from listings and cannot log in."""
        return self.update(store_id, active=False)


class StoreAuthenticator:
    """Checks store passwords."""

    def __init__(self, directory: StoreDirectory):
        self.directory = directory

    def login(self, store_id: int, password: str) -> Store:
        """
        Log into a store.

        Args:
            store_id: Store picked by the user
            password: Store password

        Returns:
            The Store

        Raises:
            InvalidStorePasswordError: Unknown or inactive store, or wrong password
        """
        store = self.directory.get(store_id)
        if store is None or not store.active or store.password != password:
            logger.warning("store_login_failed", store_id=store_id)
            raise InvalidStorePasswordError(f"Invalid password for store {store_id}")
        logger.info("store_login", store_id=store_id)
        return store
