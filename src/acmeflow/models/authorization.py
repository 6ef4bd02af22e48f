"""Authorization entity."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from acmeflow.core.types import AuthorizationStatus, ChallengeType
    from acmeflow.models.challenge import Challenge


@dataclass(frozen=True)
class Authorization:
    url: str
    domain: str
    status: AuthorizationStatus
    challenges: tuple[Challenge, ...] = ()
    wildcard: bool = False
    expires: datetime | None = None

    @property
    def offered_types(self) -> tuple[ChallengeType, ...]:
        """Challenge types offered by the server, in server order."""
        return tuple(c.type for c in self.challenges)

    @property
    def error(self) -> dict | None:
        """Problem document of the first failed challenge, if any."""
        for challenge in self.challenges:
            if challenge.error:
                return challenge.error
        return None
