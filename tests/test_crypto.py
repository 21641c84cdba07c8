import pytest
from cryptography.fernet import Fernet

from storage.crypto import SELF_PRINCIPAL, FernetCapability
from storage.errors import CapabilityError


@pytest.fixture
def capability():
    return FernetCapability(Fernet(Fernet.generate_key()))


def test_encrypt_returns_distinct_opaque_handles(capability):
    a = capability.encrypt(5)
    b = capability.encrypt(5)

    assert a != b
    assert a.startswith("0x") and len(a) == 66


def test_new_handle_has_no_readers(capability):
    handle = capability.encrypt(3)

    assert not capability.is_allowed(handle, SELF_PRINCIPAL)
    with pytest.raises(CapabilityError):
        capability.decrypt(handle, "alice")
    with pytest.raises(CapabilityError):
        capability.require_self(handle)


def test_grant_decrypt_requires_self_grant(capability):
    handle = capability.encrypt(3)

    with pytest.raises(CapabilityError):
        capability.grant_decrypt(handle, "alice")

    capability.grant_self(handle)
    capability.grant_decrypt(handle, "alice")
    capability.grant_decrypt(handle, "alice")
    assert capability.decrypt(handle, "alice") == 3


def test_grants_are_per_handle(capability):
    first = capability.encrypt(1)
    second = capability.encrypt(2)
    for h in (first, second):
        capability.grant_self(h)
    capability.grant_decrypt(first, "alice")

    assert capability.decrypt(first, "alice") == 1
    with pytest.raises(CapabilityError):
        capability.decrypt(second, "alice")


def test_unknown_handle(capability):
    with pytest.raises(CapabilityError):
        capability.grant_self("0xdeadbeef")


def test_wrong_key_cannot_decrypt(capability):
    handle = capability.encrypt(7)
    capability.grant_self(handle)
    capability.grant_decrypt(handle, "alice")
    capability._fernet = Fernet(Fernet.generate_key())

    with pytest.raises(CapabilityError):
        capability.decrypt(handle, "alice")


def test_key_from_environment(monkeypatch):
    from storage import crypto

    key = Fernet.generate_key()
    monkeypatch.setenv("APP_DATA_KEY", key.decode())
    crypto._get_fernet.cache_clear()
    try:
        cap = FernetCapability()
        handle = cap.encrypt(4)
        cap.grant_self(handle)
        cap.grant_decrypt(handle, "bob")
        token = cap._tokens[handle]
        assert Fernet(key).decrypt(token) == b'{"v": 4}'
    finally:
        crypto._get_fernet.cache_clear()


def test_release_forgets_handle(capability):
    kept = capability.encrypt(1)
    dropped = capability.encrypt(2)
    for handle in (kept, dropped):
        capability.grant_self(handle)
        capability.grant_decrypt(handle, "alice")

    capability.release(dropped)
    capability.release(dropped)

    assert capability.handle_count() == 1
    assert capability.decrypt(kept, "alice") == 1
    with pytest.raises(CapabilityError):
        capability.decrypt(dropped, "alice")
    with pytest.raises(CapabilityError):
        capability.require_self(dropped)
