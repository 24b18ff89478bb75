"""Strike count to block duration mapping."""

from __future__ import annotations

from dataclasses import dataclass

from personaforge.config.schema import EscalationConfig


@dataclass(frozen=True, slots=True)
class EscalationPolicy:
    """Geometric block curve.

    The first ``free_strikes`` strikes never block. Strike ``free_strikes + n``
    blocks for ``base * growth**(n - 1)`` seconds, capped at ``max_seconds``.
    The result is non-decreasing in the strike count.
    """

    free_strikes: int = 2
    base_seconds: float = 1800.0
    growth: float = 2.0
    max_seconds: float = 7 * 24 * 3600.0

    @classmethod
    def from_config(cls, config: EscalationConfig) -> "EscalationPolicy":
        return cls(
            free_strikes=max(0, int(config.free_strikes)),
            base_seconds=max(0.0, float(config.base_block_seconds)),
            growth=max(1.0, float(config.growth_factor)),
            max_seconds=max(0.0, float(config.max_block_seconds)),
        )

    def block_seconds(self, strikes: int) -> float:
        over = int(strikes) - self.free_strikes
        if over <= 0 or self.base_seconds <= 0:
            return 0.0
        # Exponent is bounded so huge strike counts cannot overflow.
        exponent = min(over - 1, 64)
        return min(self.max_seconds, self.base_seconds * self.growth**exponent)
