"""Order entity."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from acmeflow.core.types import OrderStatus
    from acmeflow.models.authorization import Authorization


@dataclass(frozen=True)
class Order:
    """An issuance request bound to a CSR and validity window.

    ``csr``, ``not_before`` and ``not_after`` are echoed by the server
    and must equal what was submitted.
    """

    url: str
    csr: bytes
    not_before: datetime
    not_after: datetime
    status: OrderStatus
    authorizations: tuple[Authorization, ...] = ()
    certificate_url: str | None = None
    error: dict | None = None
    expires: datetime | None = None

    @property
    def domains(self) -> tuple[str, ...]:
        return tuple(a.domain for a in self.authorizations)
