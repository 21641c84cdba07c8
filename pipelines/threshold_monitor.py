"""
pipelines/threshold_monitor.py

Plaintext clinical threshold rule.

Runs on the raw indicator values at the moment they are supplied (registration
or update), before they are encrypted.  The caller only learns *whether* the
threshold was crossed, never which indicator or rule fired.
"""

from __future__ import annotations

SINGLE_METRIC_THRESHOLD = 9
COMBINED_THRESHOLD = 7


def evaluate(anxiety: int, depression: int, stress: int) -> bool:
    """
    Return ``True`` if the levels warrant an emergency alert.

    Raised when any single indicator is at or above 9, or when all three are
    at or above 7.
    """
    levels = (anxiety, depression, stress)
    if any(v >= SINGLE_METRIC_THRESHOLD for v in levels):
        return True
    return all(v >= COMBINED_THRESHOLD for v in levels)
