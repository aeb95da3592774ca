from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from .errors import FatalConfigError
from .protocol import ServerStatus

DEFAULT_MIN_PLAYERS = 1


class Allowance(str, Enum):
    BLOCKED = "blocked"  # players online: keep the pod
    ALLOWED = "allowed"


class ConstraintField(str, Enum):
    """PodDisruptionBudget spec field this process owns."""

    MIN_AVAILABLE = "minAvailable"
    MAX_UNAVAILABLE = "maxUnavailable"

    def value_for(self, allowance: Allowance) -> int:
        blocked = allowance is Allowance.BLOCKED
        if self is ConstraintField.MIN_AVAILABLE:
            return 1 if blocked else 0
        return 0 if blocked else 1

    def allowance_for(self, value: object) -> Allowance | None:
        """Map a stored field value back to an allowance (None if unrecognised)."""
        for allowance in Allowance:
            if value == self.value_for(allowance):
                return allowance
        return None


@dataclass(frozen=True)
class ThresholdPolicy:
    min_players: int = DEFAULT_MIN_PLAYERS
    min_players_percent: float | None = None

    def __post_init__(self) -> None:
        if isinstance(self.min_players, bool) or not isinstance(self.min_players, int) or self.min_players < 0:
            raise FatalConfigError(f"min_players must be a non-negative integer, got {self.min_players!r}")
        pct = self.min_players_percent
        if pct is not None and not (0.0 <= pct <= 1.0):
            raise FatalConfigError(f"min_players_percent must be within [0.0, 1.0], got {pct!r}")

    def describe(self) -> str:
        if self.min_players_percent is not None:
            return f"{self.min_players_percent * 100:.0f}% of max players"
        return f"{self.min_players} players"


def effective_threshold(policy: ThresholdPolicy, max_players: int) -> int:
    """Number of online players at which disruption becomes blocked."""
    pct = policy.min_players_percent
    if pct is None:
        return policy.min_players
    # Round away float noise (0.7 * 10 == 7.000000000000001) before ceil.
    threshold = math.ceil(round(pct * max_players, 9))
    if pct > 0 and max_players > 0:
        threshold = max(threshold, 1)
    return threshold


def derive_allowance(status: ServerStatus, policy: ThresholdPolicy) -> Allowance:
    # Only `online` decides; an inconsistent `max` (online > max) is not rejected.
    if status.online >= effective_threshold(policy, status.max):
        return Allowance.BLOCKED
    return Allowance.ALLOWED
