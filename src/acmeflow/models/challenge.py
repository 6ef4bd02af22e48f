"""Challenge entity.

A single closed variant tagged by :attr:`Challenge.type`; the proof
material for each tag is derived by :mod:`acmeflow.challenge.registry`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from acmeflow.core.types import ChallengeStatus, ChallengeType


@dataclass(frozen=True)
class Challenge:
    url: str
    type: ChallengeType
    token: str
    status: ChallengeStatus
    error: dict | None = None
    validated: datetime | None = None
