"""
storage/models.py

Pydantic v2 data models for the counseling platform.

Records (``PatientProfile``, ``CounselingSession``, ``TherapyPlan``) hold
ciphertext *handles* only; plaintext clinical values never reach this layer.
The read models at the bottom are what queries hand back to callers and carry
no handles at all.
"""

from __future__ import annotations

from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionType(IntEnum):
    """Counseling session categories, encoded 1-4."""
    anxiety_support = 1
    depression_support = 2
    stress_management = 3
    crisis_intervention = 4


class EventKind(str, Enum):
    """Public signals emitted by the platform."""
    patient_registered = "patient_registered"
    session_started = "session_started"
    session_completed = "session_completed"
    therapy_plan_created = "therapy_plan_created"
    emergency_alert = "emergency_alert"


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


class PatientProfile(BaseModel):
    """Encrypted clinical indicators for one participant."""
    patient: str
    anxiety_handle: str
    depression_handle: str
    stress_handle: str
    active: bool = True
    registered_at: int = Field(description="Epoch seconds; never changes.")


class CounselingSession(BaseModel):
    """
    One counseling session.

    ``active=True, completed=False`` means in progress;
    ``active=False, completed=True`` is terminal.
    """
    id: int
    patient: str
    session_type_handle: str
    severity_handle: str
    improvement_handle: str = Field(
        description="Encrypted zero until the session is completed."
    )
    active: bool = True
    completed: bool = False
    start_time: int
    end_time: int = 0


class TherapyPlan(BaseModel):
    """Counselor-authored plan; re-creating it overwrites the previous one."""
    patient: str
    recommended_sessions_handle: str
    priority_handle: str
    active: bool = True
    created_at: int


class SchedulerState(BaseModel):
    next_session_id: int = 1
    last_session_time: int = 0


# ---------------------------------------------------------------------------
# Read models (no ciphertext handles)
# ---------------------------------------------------------------------------


class SessionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    active: bool
    completed: bool
    start_time: int
    end_time: int
    patient: str


class SessionAvailability(BaseModel):
    model_config = ConfigDict(frozen=True)

    available: bool
    next_available_time: int
    current_time: int


class SessionStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    next_session_id: int
    total_sessions: int
    last_session_time: int


class PlanStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    active: bool = False
    created_at: int = 0


class PlatformEvent(BaseModel):
    """
    A public signal.

    Only identity, timestamp and (where relevant) session id are carried;
    clinical values and the rule that fired are never part of an event.
    """
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    kind: EventKind
    patient: str
    timestamp: int
    session_id: int | None = None
