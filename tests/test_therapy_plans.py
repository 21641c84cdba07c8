import pytest

from conftest import COUNSELOR, OUTSIDER, PATIENT_1, PATIENT_2
from storage.errors import NotRegistered, OutOfRange, Unauthorized
from storage.models import EventKind


def test_counselor_creates_plan(registered, capability, clock):
    registered.create_therapy_plan(COUNSELOR, PATIENT_1, 10, 3)

    status = registered.get_therapy_plan_status(PATIENT_1)
    assert status.active is True
    assert status.created_at == clock.now

    plan = registered.get_therapy_plan(PATIENT_1)
    assert capability.plaintexts[plan.recommended_sessions_handle] == 10
    assert capability.plaintexts[plan.priority_handle] == 3
    assert capability.readers(plan.recommended_sessions_handle) == {PATIENT_1}
    assert capability.readers(plan.priority_handle) == {PATIENT_1}


def test_non_counselor_rejected(registered):
    with pytest.raises(Unauthorized, match="Not authorized counselor"):
        registered.create_therapy_plan(OUTSIDER, PATIENT_1, 10, 3)
    with pytest.raises(Unauthorized):
        registered.create_therapy_plan(PATIENT_1, PATIENT_1, 10, 3)

    assert registered.get_therapy_plan_status(PATIENT_1).active is False


def test_plan_requires_registered_patient(registered):
    with pytest.raises(NotRegistered):
        registered.create_therapy_plan(COUNSELOR, PATIENT_2, 10, 3)


@pytest.mark.parametrize("sessions,priority", [(0, 2), (21, 2), (5, 0), (5, 5)])
def test_plan_ranges(registered, sessions, priority):
    with pytest.raises(OutOfRange):
        registered.create_therapy_plan(COUNSELOR, PATIENT_1, sessions, priority)
    assert registered.get_therapy_plan(PATIENT_1) is None


def test_plan_overwrite(registered, capability, clock):
    registered.create_therapy_plan(COUNSELOR, PATIENT_1, 10, 3)
    clock.advance(500)
    registered.create_therapy_plan(COUNSELOR, PATIENT_1, 20, 1)

    plan = registered.get_therapy_plan(PATIENT_1)
    assert capability.plaintexts[plan.recommended_sessions_handle] == 20
    assert plan.created_at == clock.now
    assert len(registered.events.of_kind(EventKind.therapy_plan_created)) == 2


def test_plan_status_default(platform):
    status = platform.get_therapy_plan_status(PATIENT_1)
    assert status.active is False
    assert status.created_at == 0


def test_plan_overwrite_releases_previous_handles(registered, capability):
    registered.create_therapy_plan(COUNSELOR, PATIENT_1, 10, 3)
    first = registered.get_therapy_plan(PATIENT_1)
    assert capability.released == []

    registered.create_therapy_plan(COUNSELOR, PATIENT_1, 20, 1)

    assert capability.released == [first.recommended_sessions_handle, first.priority_handle]
