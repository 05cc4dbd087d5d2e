"""Frecency: frequency + recency in one number. Accessed memories rise, idle ones fade.

Boost (on retrieval):   frecency * 0.95 + boost
Decay (periodic):       frecency * factor
Cleanup:                delete memories whose frecency fell under a threshold

Repeated boosts compound towards ``boost / (1 - 0.95)``, 2.0 with the default
boost, so a hot memory can never run away from the rest.
"""

from __future__ import annotations

INITIAL_FRECENCY = 1.0
DEFAULT_BOOST = 0.1
BOOST_RETENTION = 0.95
DEFAULT_DECAY_FACTOR = 0.99
DEFAULT_CLEANUP_THRESHOLD = 0.01


def validate_boost(boost: float) -> float:
    if boost < 0:
        raise ValueError(f"Frecency boost must be >= 0, got {boost}")
    return float(boost)


def validate_decay_factor(factor: float) -> float:
    if not 0 < factor <= 1:
        raise ValueError(f"Decay factor must be in (0, 1], got {factor}")
    return float(factor)


def boosted(frecency: float, boost: float = DEFAULT_BOOST) -> float:
    """Frecency after one access."""
    return frecency * BOOST_RETENTION + validate_boost(boost)


def decayed(frecency: float, factor: float = DEFAULT_DECAY_FACTOR) -> float:
    """Frecency after one decay tick."""
    return frecency * validate_decay_factor(factor)


def asymptote(boost: float = DEFAULT_BOOST) -> float:
    """Fixed point of repeated boosting: the ceiling a memory converges to."""
    return validate_boost(boost) / (1 - BOOST_RETENTION)
