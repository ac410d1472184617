"""
Lifecycle policy parameters.

These are regulatory decisions supplied by the deployment (see Settings),
not constants of the engine.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from rentcontrol.models.enums import ResolutionType


@dataclass(frozen=True)
class LifecyclePolicy:
    # None: no grace window configured, reopening is refused
    reopen_grace_period: Optional[timedelta] = None
    award_bearing_resolutions: frozenset = field(
        default_factory=lambda: frozenset({ResolutionType.ARBITRATION_AWARD, ResolutionType.RULING})
    )
    officer_assign_requires_capability: bool = False

    def requires_award(self, resolution: ResolutionType) -> bool:
        return resolution in self.award_bearing_resolutions
