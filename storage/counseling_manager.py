"""
storage/counseling_manager.py

Encrypted session & profile manager for the counseling platform.

Responsibilities
----------------
- Profile store: one encrypted clinical profile per participant, permanent
  registration, overwritable indicator levels.
- Session scheduler: globally throttled session starts, per-session
  lifecycle ``active -> completed``, encrypted improvement score.
- Therapy plans: counselor-authored, encrypted, one per patient.
- Threshold monitoring: plaintext levels are checked by
  :mod:`pipelines.threshold_monitor` and may raise a public emergency alert.

Every mutating call follows the same order: validate all inputs, encrypt and
grant every new handle, confirm the runtime holds each handle, commit state,
release the handles the commit superseded, emit events.  An exception at any
step before the commit releases the new handles and leaves the platform
exactly as it was.  Event delivery failures are logged by the event log and
never reach the caller.

Concurrency
-----------
Mutations are serialized by a per-instance re-entrant lock, which makes the
cooldown check-then-set in :meth:`CounselingPlatform.start_session` atomic.
Queries read without the lock.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from pipelines import threshold_monitor
from storage.config import DEFAULT_BREAK_DURATION, PlatformConfig
from storage.crypto import EncryptionCapability, FernetCapability
from storage.db import AuditStore
from storage.errors import (
    AlreadyCompleted,
    AlreadyRegistered,
    CapabilityError,
    InvalidSessionType,
    NoSlotAvailable,
    NotRegistered,
    OutOfRange,
    SessionNotActive,
    SessionNotFound,
    Unauthorized,
)
from storage.events import EventLog
from storage.models import (
    CounselingSession,
    EventKind,
    PatientProfile,
    PlanStatus,
    PlatformEvent,
    SchedulerState,
    SessionAvailability,
    SessionInfo,
    SessionStats,
    SessionType,
    TherapyPlan,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], int]

# ---------------------------------------------------------------------------
# Input bounds (inclusive)
# ---------------------------------------------------------------------------

LEVEL_RANGE = (0, 10)
SEVERITY_RANGE = (1, 10)
IMPROVEMENT_RANGE = (0, 10)
RECOMMENDED_SESSIONS_RANGE = (1, 20)
PRIORITY_RANGE = (1, 4)


def _system_clock() -> int:
    return int(time.time())


def _check_range(field: str, value: int, bounds: tuple[int, int]) -> int:
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise OutOfRange(field, low, high)
    return value


def _check_levels(anxiety: int, depression: int, stress: int) -> None:
    _check_range("anxiety", anxiety, LEVEL_RANGE)
    _check_range("depression", depression, LEVEL_RANGE)
    _check_range("stress", stress, LEVEL_RANGE)


class CounselingPlatform:
    """
    Args:
        counselor:       The single privileged counselor identity.
        capability:      Encryption backend; defaults to :class:`FernetCapability`.
        clock:           Returns the current time in epoch seconds.
        break_duration:  Global cooldown between session starts, in seconds.
        events:          Event log; a fresh in-memory one by default.
    """

    def __init__(
        self,
        counselor: str,
        capability: EncryptionCapability | None = None,
        clock: Clock | None = None,
        break_duration: int = DEFAULT_BREAK_DURATION,
        events: EventLog | None = None,
    ):
        if not counselor:
            raise ValueError("counselor identity must be non-empty")
        if break_duration < 0:
            raise ValueError("break_duration must be >= 0")

        self._counselor = counselor
        self._capability = capability if capability is not None else FernetCapability()
        self._clock = clock or _system_clock
        self._break_duration = break_duration
        self.events = events if events is not None else EventLog()

        self._profiles: dict[str, PatientProfile] = {}
        self._sessions: dict[int, CounselingSession] = {}
        self._patient_sessions: dict[str, list[int]] = {}
        self._plans: dict[str, TherapyPlan] = {}
        self._state = SchedulerState()
        self._lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        config: PlatformConfig,
        capability: EncryptionCapability | None = None,
        clock: Clock | None = None,
    ) -> CounselingPlatform:
        """Build a platform from :class:`PlatformConfig`, wiring the audit store if configured."""
        store = None
        if config.audit_db_path is not None:
            store = AuditStore(config.audit_db_path)
            store.init_db()
        return cls(
            counselor=config.counselor,
            capability=capability,
            clock=clock,
            break_duration=config.break_duration_seconds,
            events=EventLog(store),
        )

    # ------------------------------------------------------------------
    # Handle plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _sealing(self) -> Iterator[list[str]]:
        """Collect handles sealed in the block; release them all if the block raises."""
        batch: list[str] = []
        try:
            yield batch
        except Exception:
            self._release(*batch)
            raise

    def _seal(self, batch: list[str], value: int, *readers: str) -> str:
        """Encrypt *value*, take runtime ownership, and share it with *readers*."""
        handle = self._capability.encrypt(value)
        batch.append(handle)
        self._capability.grant_self(handle)
        for principal in readers:
            self._capability.grant_decrypt(handle, principal)
        return handle

    def _require_held(self, *handles: str) -> None:
        for handle in handles:
            self._capability.require_self(handle)

    def _release(self, *handles: str) -> None:
        for handle in handles:
            self._capability.release(handle)

    def _next_available_time(self, state: SchedulerState) -> int:
        # no session started yet: no cooldown to wait for
        if state.next_session_id == 1:
            return 0
        return state.last_session_time + self._break_duration

    def _emit(self, kind: EventKind, patient: str, timestamp: int, session_id: int | None = None) -> None:
        self.events.emit(
            PlatformEvent(kind=kind, patient=patient, timestamp=timestamp, session_id=session_id)
        )

    def _raise_alert_if_needed(self, identity: str, levels: tuple[int, int, int], now: int) -> None:
        if threshold_monitor.evaluate(*levels):
            logger.warning("Emergency threshold crossed for patient=%s", identity)
            self._emit(EventKind.emergency_alert, identity, now)

    # ------------------------------------------------------------------
    # Profile store
    # ------------------------------------------------------------------

    def register_patient(self, identity: str, anxiety: int, depression: int, stress: int) -> None:
        """
        Register *identity* with encrypted anxiety / depression / stress levels.

        Each level is an integer in [0, 10].  The patient and the counselor
        are both granted decryption on all three handles.

        Raises:
            AlreadyRegistered: If *identity* already has an active profile.
            OutOfRange:        If any level is outside [0, 10].
            CapabilityError:   If a handle could not be granted or held.
        """
        with self._lock:
            existing = self._profiles.get(identity)
            if existing is not None and existing.active:
                logger.warning("register_patient: %s already registered", identity)
                raise AlreadyRegistered(identity)
            _check_levels(anxiety, depression, stress)

            now = self._clock()
            readers = (identity, self._counselor)
            with self._sealing() as batch:
                profile = PatientProfile(
                    patient=identity,
                    anxiety_handle=self._seal(batch, anxiety, *readers),
                    depression_handle=self._seal(batch, depression, *readers),
                    stress_handle=self._seal(batch, stress, *readers),
                    active=True,
                    registered_at=now,
                )
                self._require_held(*batch)

            self._profiles[identity] = profile
            self._patient_sessions.setdefault(identity, [])
            logger.info("Registered patient %s", identity)

            self._emit(EventKind.patient_registered, identity, now)
            self._raise_alert_if_needed(identity, (anxiety, depression, stress), now)

    def update_levels(self, identity: str, anxiety: int, depression: int, stress: int) -> None:
        """
        Replace the three encrypted levels of an existing profile.

        Fresh ciphertexts need fresh grants, so the patient and counselor are
        granted again on every new handle.  The replaced handles are released
        and can no longer be decrypted.

        Raises:
            NotRegistered: If *identity* has no active profile.
            OutOfRange:    If any level is outside [0, 10].
        """
        with self._lock:
            profile = self._active_profile(identity)
            _check_levels(anxiety, depression, stress)

            now = self._clock()
            readers = (identity, self._counselor)
            with self._sealing() as batch:
                updated = profile.model_copy(
                    update={
                        "anxiety_handle": self._seal(batch, anxiety, *readers),
                        "depression_handle": self._seal(batch, depression, *readers),
                        "stress_handle": self._seal(batch, stress, *readers),
                    }
                )
                self._require_held(*batch)

            self._profiles[identity] = updated
            self._release(profile.anxiety_handle, profile.depression_handle, profile.stress_handle)
            logger.info("Updated levels for patient %s", identity)

            self._raise_alert_if_needed(identity, (anxiety, depression, stress), now)

    def is_patient_registered(self, identity: str) -> bool:
        profile = self._profiles.get(identity)
        return profile is not None and profile.active

    def get_profile(self, identity: str) -> PatientProfile:
        """Return the profile record (handles only).  Raises NotRegistered."""
        return self._active_profile(identity)

    def _active_profile(self, identity: str) -> PatientProfile:
        profile = self._profiles.get(identity)
        if profile is None or not profile.active:
            logger.warning("Patient %s is not registered", identity)
            raise NotRegistered(identity)
        return profile

    # ------------------------------------------------------------------
    # Session scheduler
    # ------------------------------------------------------------------

    def start_session(self, identity: str, session_type: int, severity: int) -> int:
        """
        Start a counseling session for *identity* and return its id.

        Only one session may be started per cooldown window across the whole
        platform, whichever patient starts it.

        Raises:
            NoSlotAvailable:    If the global cooldown has not elapsed.
            NotRegistered:      If *identity* has no active profile.
            InvalidSessionType: If *session_type* is not 1-4.
            OutOfRange:         If *severity* is outside [1, 10].
        """
        with self._lock:
            now = self._clock()
            next_available = self._next_available_time(self._state)
            if now < next_available:
                logger.warning(
                    "start_session: no slot for %s until %d (now=%d)", identity, next_available, now
                )
                raise NoSlotAvailable(next_available)

            self._active_profile(identity)
            if (
                isinstance(session_type, bool)
                or not isinstance(session_type, int)
                or session_type not in SessionType._value2member_map_
            ):
                raise InvalidSessionType()
            _check_range("severity", severity, SEVERITY_RANGE)

            session_id = self._state.next_session_id
            with self._sealing() as batch:
                session = CounselingSession(
                    id=session_id,
                    patient=identity,
                    session_type_handle=self._seal(batch, int(session_type), self._counselor),
                    severity_handle=self._seal(batch, severity, self._counselor),
                    improvement_handle=self._seal(batch, 0),
                    active=True,
                    completed=False,
                    start_time=now,
                    end_time=0,
                )
                self._require_held(*batch)

            self._sessions[session_id] = session
            self._patient_sessions.setdefault(identity, []).append(session_id)
            self._state = SchedulerState(
                next_session_id=session_id + 1,
                last_session_time=max(self._state.last_session_time, now),
            )
            logger.info("Started session %d for patient %s", session_id, identity)

            self._emit(EventKind.session_started, identity, now, session_id)
            return session_id

    def complete_session(self, identity: str, session_id: int, improvement_score: int) -> None:
        """
        Complete an active session, recording an encrypted improvement score.

        The owning patient or the counselor may complete a session, once.

        Raises:
            SessionNotFound:  If *session_id* was never allocated.
            AlreadyCompleted: If the session is already completed.
            SessionNotActive: If the record is neither active nor completed. Sessions
                              are created active and only leave that state by
                              completing, so this guards records restored from
                              elsewhere rather than any reachable transition.
            Unauthorized:     If *identity* is neither owner nor counselor.
            OutOfRange:       If *improvement_score* is outside [0, 10].
        """
        with self._lock:
            session = self._get_session(session_id)
            if session.completed:
                raise AlreadyCompleted(session_id)
            if not session.active:
                raise SessionNotActive(session_id)
            if identity not in (session.patient, self._counselor):
                logger.warning("complete_session: %s may not complete session %d", identity, session_id)
                raise Unauthorized("Not authorized to complete this session")
            _check_range("improvement score", improvement_score, IMPROVEMENT_RANGE)

            now = self._clock()
            with self._sealing() as batch:
                improvement_handle = self._seal(batch, improvement_score, session.patient, self._counselor)
                self._require_held(*batch)

            self._sessions[session_id] = session.model_copy(
                update={
                    "improvement_handle": improvement_handle,
                    "active": False,
                    "completed": True,
                    "end_time": now,
                }
            )
            self._release(session.improvement_handle)
            logger.info("Completed session %d (by %s)", session_id, identity)

            self._emit(EventKind.session_completed, session.patient, now, session_id)

    def is_session_time_available(self) -> bool:
        return self.get_session_availability().available

    def get_session_availability(self) -> SessionAvailability:
        now = self._clock()
        next_available = self._next_available_time(self._state)
        return SessionAvailability(
            available=now >= next_available,
            next_available_time=next_available,
            current_time=now,
        )

    def get_patient_session_count(self, identity: str) -> int:
        return len(self._patient_sessions.get(identity, ()))

    def get_patient_sessions(self, identity: str) -> list[int]:
        return list(self._patient_sessions.get(identity, ()))

    def get_session_info(self, session_id: int) -> SessionInfo:
        """Non-confidential metadata for *session_id*; never includes handles."""
        session = self._get_session(session_id)
        return SessionInfo(
            active=session.active,
            completed=session.completed,
            start_time=session.start_time,
            end_time=session.end_time,
            patient=session.patient,
        )

    def get_session(self, session_id: int) -> CounselingSession:
        return self._get_session(session_id)

    def get_session_stats(self) -> SessionStats:
        state = self._state
        return SessionStats(
            next_session_id=state.next_session_id,
            total_sessions=state.next_session_id - 1,
            last_session_time=state.last_session_time,
        )

    @property
    def scheduler_state(self) -> SchedulerState:
        return self._state.model_copy()

    def _get_session(self, session_id: int) -> CounselingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    # ------------------------------------------------------------------
    # Therapy plans
    # ------------------------------------------------------------------

    def create_therapy_plan(
        self,
        caller: str,
        patient: str,
        recommended_sessions: int,
        priority: int,
    ) -> None:
        """
        Create or overwrite the therapy plan for *patient*.

        Handles of an overwritten plan are released.

        Raises:
            Unauthorized:  If *caller* is not the counselor.
            NotRegistered: If *patient* has no active profile.
            OutOfRange:    If sessions is outside [1, 20] or priority outside [1, 4].
        """
        with self._lock:
            if caller != self._counselor:
                logger.warning("create_therapy_plan: %s is not the counselor", caller)
                raise Unauthorized("Not authorized counselor")
            self._active_profile(patient)
            _check_range("recommended sessions", recommended_sessions, RECOMMENDED_SESSIONS_RANGE)
            _check_range("priority", priority, PRIORITY_RANGE)

            now = self._clock()
            with self._sealing() as batch:
                plan = TherapyPlan(
                    patient=patient,
                    recommended_sessions_handle=self._seal(batch, recommended_sessions, patient),
                    priority_handle=self._seal(batch, priority, patient),
                    active=True,
                    created_at=now,
                )
                self._require_held(*batch)

            previous = self._plans.get(patient)
            self._plans[patient] = plan
            if previous is not None:
                self._release(previous.recommended_sessions_handle, previous.priority_handle)
            logger.info("Therapy plan created for patient %s", patient)

            self._emit(EventKind.therapy_plan_created, patient, now)

    def get_therapy_plan_status(self, patient: str) -> PlanStatus:
        plan = self._plans.get(patient)
        if plan is None:
            return PlanStatus()
        return PlanStatus(active=plan.active, created_at=plan.created_at)

    def get_therapy_plan(self, patient: str) -> TherapyPlan | None:
        return self._plans.get(patient)

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    @property
    def counselor(self) -> str:
        return self._counselor

    @property
    def break_duration(self) -> int:
        return self._break_duration

    def decrypt_for(self, principal: str, handle: str) -> int:
        """
        Decrypt *handle* as *principal* would off-platform.

        Raises:
            CapabilityError: If *principal* was never granted the handle.
        """
        try:
            return self._capability.decrypt(handle, principal)
        except CapabilityError:
            logger.warning("decrypt_for denied: principal=%s", principal)
            raise
