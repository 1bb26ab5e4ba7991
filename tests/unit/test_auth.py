"""Tests for the store directory and store login."""
import pytest

from agenda.auth import StoreAuthenticator, StoreDirectory, StoreNotFoundError
from agenda.errors import InvalidStorePasswordError


@pytest.fixture
def directory(storage):
    return StoreDirectory(storage)


@pytest.fixture
def authenticator(directory):
    return StoreAuthenticator(directory)


class TestStoreDirectory:

    def test_lists_seeded_stores(self, directory):
        assert [s.id for s in directory.list_stores()] == [1, 2, 3, 4, 5]

    def test_other_company_not_listed(self, storage):
        assert StoreDirectory(storage, company_id=2).list_stores() == []

    def test_add_uses_next_id(self, directory):
        store = directory.add("Shopping", color="#2196F3", password="abcd")

        assert store.id == 6
        assert directory.get(6).name == "Shopping"

    def test_update(self, directory):
        directory.update(2, name="Centro", password="9999")

        store = directory.get(2)
        assert store.name == "Centro"
        assert store.password == "9999"

    def test_update_unknown_store(self, directory):
        with pytest.raises(StoreNotFoundError):
            directory.update(99, name="Nope")

    def test_update_unknown_field(self, directory):
        with pytest.raises(ValueError):
            directory.update(1, company_id=3)

    def test_deactivate_is_soft(self, directory, storage):
        directory.deactivate(3)

        assert 3 not in [s.id for s in directory.list_stores()]
        assert directory.get(3).active is False
        assert 3 in [s.id for s in storage.load().stores]


class TestStoreAuthenticator:

    def test_login_with_default_password(self, authenticator):
        assert authenticator.login(1, "1234").name == "Loja 1"

    def test_wrong_password(self, authenticator):
        with pytest.raises(InvalidStorePasswordError):
            authenticator.login(1, "0000")

    def test_unknown_store(self, authenticator):
        with pytest.raises(InvalidStorePasswordError):
            authenticator.login(42, "1234")

    def test_inactive_store_cannot_log_in(self, authenticator, directory):
        directory.deactivate(2)

        with pytest.raises(InvalidStorePasswordError):
            authenticator.login(2, "1234")

    def test_changed_password(self, authenticator, directory):
        directory.update(4, password="secret")

        assert authenticator.login(4, "secret").id == 4
