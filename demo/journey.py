"""
demo/journey.py

End-to-end patient journey against an in-memory platform.

Walks through registration, an emergency-level registration, a therapy plan,
a session start, a blocked second start, session completion, a level update,
and user-side decryption, then prints the public event log.

Usage:
  python -m demo.journey

The clock is simulated so the cooldown can be crossed without waiting.
"""

import logging

from storage.counseling_manager import CounselingPlatform
from storage.crypto import FernetCapability
from storage.errors import NoSlotAvailable

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

COUNSELOR = "counselor"
PATIENT = "patient-1"
OTHER_PATIENT = "patient-2"
_START_TIME = 1_700_000_000


class _SimulatedClock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def main() -> None:
    """Run the journey and print the event table."""
    clock = _SimulatedClock(_START_TIME)
    platform = CounselingPlatform(COUNSELOR, capability=FernetCapability(), clock=clock)

    print("[Journey] 1. Patient registers with encrypted levels (7, 5, 6)")
    platform.register_patient(PATIENT, 7, 5, 6)

    print("[Journey] 2. Second patient registers with levels that cross the threshold")
    clock.advance(10)
    platform.register_patient(OTHER_PATIENT, 9, 5, 6)

    print("[Journey] 3. Counselor creates a therapy plan (12 sessions, priority 4)")
    platform.create_therapy_plan(COUNSELOR, PATIENT, 12, 4)

    print("[Journey] 4. Patient starts a session")
    session_id = platform.start_session(PATIENT, 1, 8)

    print("[Journey] 5. Second patient tries to start a session immediately")
    try:
        platform.start_session(OTHER_PATIENT, 2, 7)
    except NoSlotAvailable as exc:
        print(f"           rejected: {exc} (next slot at {exc.next_available_time})")

    print("[Journey] 6. Session completed with improvement score 7")
    clock.advance(600)
    platform.complete_session(PATIENT, session_id, 7)

    print("[Journey] 7. Patient updates levels (6, 5, 7)")
    platform.update_levels(PATIENT, 6, 5, 7)

    print("[Journey] 8. Decryption by granted principals")
    session = platform.get_session(session_id)
    profile = platform.get_profile(PATIENT)
    print(f"           patient reads improvement score: {platform.decrypt_for(PATIENT, session.improvement_handle)}")
    print(f"           counselor reads anxiety level:   {platform.decrypt_for(COUNSELOR, profile.anxiety_handle)}")

    # ---------------------------------------------------------------------------
    # Print table
    # ---------------------------------------------------------------------------
    header = f"{'#':<4} {'Event':<24} {'Patient':<12} {'Session':<9} {'Timestamp'}"
    print("\n" + "=" * 70)
    print("PUBLIC EVENT LOG")
    print("=" * 70)
    print(header)
    print("-" * 70)
    for i, event in enumerate(platform.events.events, start=1):
        session_str = str(event.session_id) if event.session_id is not None else "-"
        print(f"{i:<4} {event.kind:<24} {event.patient:<12} {session_str:<9} {event.timestamp}")

    stats = platform.get_session_stats()
    print("=" * 70)
    print(f"Total sessions:    {stats.total_sessions}")
    print(f"Next session id:   {stats.next_session_id}")
    print(f"Last session time: {stats.last_session_time}")
    print("=" * 70)


if __name__ == "__main__":
    main()
