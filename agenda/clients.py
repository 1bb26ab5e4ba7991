"""Client registry.

Clients live in the local document next to the stores, scoped by company.
Every successful booking registers its client unless one with the same phone
already exists, so the registry fills itself from the calendar.
"""
from typing import List, Optional

from agenda import config
from agenda.logging_config import get_logger
from agenda.models import Client, StorageDocument, digits_only, utc_now_iso
from agenda.storage import LocalDocumentStorage

logger = get_logger(__name__)

CLIENT_FIELDS = {"name", "phone", "email", "cpf", "notes"}


class ClientNotFoundError(Exception):
    """Raised when a client id is not in the registry."""
    pass


class ClientDirectory:
    """Clients of one company, kept in the local document."""

    def __init__(self, storage: LocalDocumentStorage, company_id: int = config.DEFAULT_COMPANY_ID):
        self.storage = storage
        self.company_id = company_id

    def list_clients(self) -> List[Client]:
        """Clients of the current company, by name."""
        clients = [c for c in self.storage.load().clients if c.company_id == self.company_id]
        return sorted(clients, key=lambda c: (c.name.lower(), c.id))

    def get(self, client_id: int) -> Optional[Client]:
        for client in self.list_clients():
            if client.id == client_id:
                return client
        return None

    def find_by_phone(self, phone: str) -> Optional[Client]:
        digits = digits_only(phone)
        if not digits:
            return None
        for client in self.list_clients():
            if client.phone == digits:
                return client
        return None

    def search(self, query: str) -> List[Client]:
        """
        Case-insensitive match on name or email, digit match on phone.

        An empty query returns every client.
        """
        text = (query or "").strip().lower()
        if not text:
            return self.list_clients()
        digits = digits_only(text)
        return [
            client for client in self.list_clients()
            if text in client.name.lower()
            or text in client.email.lower()
            or (digits and digits in client.phone)
        ]

    def add(self, name: str, phone: str = "", email: str = "", cpf: str = "", notes: str = "") -> Client:
        """Register a client with the next free id."""
        def mutate(document: StorageDocument) -> Client:
            ids = [c.id for c in document.clients]
            client = Client(
                id=max(ids, default=0) + 1,
                company_id=self.company_id,
                name=name,
                phone=phone,
                email=email,
                cpf=cpf,
                notes=notes,
                created_at=utc_now_iso(),
            )
            document.clients.append(client)
            return client

        client = self.storage.update(mutate)
        logger.info("client_added", client_id=client.id)
        return client

    def update(self, client_id: int, **changes) -> Client:
        """
        Change name, phone, email, cpf or notes.

        Raises:
            ClientNotFoundError: Unknown client id
            ValueError: Unknown field
        """
        unknown = set(changes) - CLIENT_FIELDS
        if unknown:
            raise ValueError(f"Unknown client fields: {sorted(unknown)}")

        def mutate(document: StorageDocument) -> Client:
            for index, client in enumerate(document.clients):
                if client.id == client_id and client.company_id == self.company_id:
                    updated = Client(**{**client.model_dump(), **changes})
                    document.clients[index] = updated
                    return updated
            raise ClientNotFoundError(f"Client {client_id} not found")

        client = self.storage.update(mutate)
        logger.info("client_updated", client_id=client_id, fields=sorted(changes))
        return client

    def delete(self, client_id: int) -> None:
        """
        Remove a client. Appointments keep their copied name and phone.

        Raises:
            ClientNotFoundError: Unknown client id
        """
        def mutate(document: StorageDocument) -> None:
            kept = [
                c for c in document.clients
                if not (c.id == client_id and c.company_id == self.company_id)
            ]
            if len(kept) == len(document.clients):
                raise ClientNotFoundError(f"Client {client_id} not found")
            document.clients = kept

        self.storage.update(mutate)
        logger.info("client_deleted", client_id=client_id)

    def ensure_client(self, name: str, phone: str) -> Optional[Client]:
        """
        Register the client of a booking unless the phone is already known.

        Returns:
            The existing or new client, or None when there is no phone to
            deduplicate on
        """
        digits = digits_only(phone)
        if not digits:
            return None

        def mutate(document: StorageDocument) -> Client:
            for client in document.clients:
                if client.company_id == self.company_id and client.phone == digits:
                    return client
            client = Client(
                id=max((c.id for c in document.clients), default=0) + 1,
                company_id=self.company_id,
                name=name,
                phone=digits,
                created_at=utc_now_iso(),
            )
            document.clients.append(client)
            logger.info("client_registered", client_id=client.id)
            return client

        return self.storage.update(mutate)

    def count(self) -> int:
        return len(self.list_clients())
