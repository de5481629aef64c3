import unittest
from unittest.mock import patch

import keyring.errors
import pytest

from userpool.errors import StorageError
from userpool.storage import KeyringStorage, MemoryStorage, StorageKeys


class _FakeKeyring:
    errors = keyring.errors

    def __init__(self, fail_writes=False):
        self.store = {}
        self.fail_writes = fail_writes

    def set_password(self, service, key, value):
        if self.fail_writes:
            raise keyring.errors.PasswordSetError("locked")
        self.store[(service, key)] = value

    def get_password(self, service, key):
        return self.store.get((service, key))

    def delete_password(self, service, key):
        if (service, key) not in self.store:
            raise keyring.errors.PasswordDeleteError("not found")
        del self.store[(service, key)]


class MemoryStorageTests(unittest.TestCase):
    def test_set_get_remove(self):
        storage = MemoryStorage()
        self.assertIsNone(storage.get_item("k"))
        storage.set_item("k", "v")
        self.assertEqual(storage.get_item("k"), "v")
        storage.remove_item("k")
        storage.remove_item("k")
        self.assertIsNone(storage.get_item("k"))

    def test_clear(self):
        storage = MemoryStorage()
        storage.set_item("a", "1")
        storage.clear()
        self.assertIsNone(storage.get_item("a"))


class KeyringStorageTests(unittest.TestCase):
    def test_round_trip(self):
        fake = _FakeKeyring()
        with patch("userpool.storage.keyring", fake):
            storage = KeyringStorage(service="svc")
            storage.set_item("k", "v")
            self.assertEqual(fake.store[("svc", "k")], "v")
            self.assertEqual(storage.get_item("k"), "v")
            storage.remove_item("k")
            self.assertIsNone(storage.get_item("k"))

    def test_remove_missing_entry_is_quiet(self):
        with patch("userpool.storage.keyring", _FakeKeyring()):
            KeyringStorage().remove_item("absent")

    def test_write_failure_raises_storage_error(self):
        with patch("userpool.storage.keyring", _FakeKeyring(fail_writes=True)):
            storage = KeyringStorage()
            with self.assertRaises(StorageError):
                storage.set_item("k", "v")

    def test_requires_keyring(self):
        with patch("userpool.storage.keyring", None):
            with self.assertRaises(RuntimeError):
                KeyringStorage()


class TestStorageKeys:
    def test_layout(self):
        keys = StorageKeys("client-1")
        assert keys.user_key("alice", "idToken") == "CognitoIdentityServiceProvider.client-1.alice.idToken"
        assert keys.last_user() == "CognitoIdentityServiceProvider.client-1.LastAuthUser"

    @pytest.mark.parametrize("name", StorageKeys.TOKEN_NAMES + StorageKeys.DEVICE_NAMES)
    def test_names_are_namespaced(self, name):
        assert StorageKeys("c", prefix="p").user_key("u", name) == f"p.c.u.{name}"
