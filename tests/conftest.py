from __future__ import annotations

import itertools

import pytest
from cryptography.fernet import Fernet

from storage.counseling_manager import CounselingPlatform
from storage.crypto import FernetCapability
from storage.errors import CapabilityError

COUNSELOR = "counselor"
PATIENT_1 = "patient-1"
PATIENT_2 = "patient-2"
OUTSIDER = "outsider"
START_TIME = 1_700_000_000


class ManualClock:
    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class RecordingCapability:
    """
    Fake encryption backend: no cryptography, just a call log.

    ``skip_self_grants`` makes ``grant_self`` a no-op to simulate a backend
    that silently drops the runtime grant.
    """

    def __init__(self, skip_self_grants: bool = False):
        self.calls: list[tuple] = []
        self.plaintexts: dict[str, int] = {}
        self.acl: dict[str, set[str]] = {}
        self.self_held: set[str] = set()
        self.released: list[str] = []
        self.skip_self_grants = skip_self_grants
        self._ids = itertools.count(1)

    def encrypt(self, value: int) -> str:
        handle = f"h{next(self._ids)}"
        self.plaintexts[handle] = value
        self.acl[handle] = set()
        self.calls.append(("encrypt", value, handle))
        return handle

    def grant_self(self, handle: str) -> None:
        self.calls.append(("grant_self", handle))
        if not self.skip_self_grants:
            self.self_held.add(handle)

    def grant_decrypt(self, handle: str, principal: str) -> None:
        self.calls.append(("grant_decrypt", handle, principal))
        self.acl[handle].add(principal)

    def require_self(self, handle: str) -> None:
        if handle not in self.self_held:
            raise CapabilityError(f"{handle} not held")

    def decrypt(self, handle: str, principal: str) -> int:
        if principal not in self.acl.get(handle, ()):
            raise CapabilityError(f"{principal} may not decrypt {handle}")
        return self.plaintexts[handle]

    def release(self, handle: str) -> None:
        self.calls.append(("release", handle))
        self.released.append(handle)
        self.acl.pop(handle, None)
        self.self_held.discard(handle)

    def readers(self, handle: str) -> set[str]:
        return set(self.acl[handle])


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def capability() -> RecordingCapability:
    return RecordingCapability()


@pytest.fixture
def platform(capability, clock) -> CounselingPlatform:
    return CounselingPlatform(COUNSELOR, capability=capability, clock=clock)


@pytest.fixture
def fernet_capability() -> FernetCapability:
    return FernetCapability(Fernet(Fernet.generate_key()))


@pytest.fixture
def fernet_platform(fernet_capability, clock) -> CounselingPlatform:
    return CounselingPlatform(COUNSELOR, capability=fernet_capability, clock=clock)


@pytest.fixture
def registered(platform) -> CounselingPlatform:
    platform.register_patient(PATIENT_1, 7, 5, 6)
    return platform
