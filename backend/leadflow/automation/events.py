"""Domain event passed from CRM mutations to the trigger dispatcher."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DomainEvent:
    type: str
    record_id: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    actor_id: str | None = None
    tenant_id: str | None = None
    hops: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "recordId": self.record_id,
            "payload": dict(self.payload),
            "actorId": self.actor_id,
            "tenantId": self.tenant_id,
            "hops": self.hops,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DomainEvent:
        return cls(
            type=str(data.get("type") or ""),
            record_id=str(data.get("recordId") or ""),
            payload=dict(data.get("payload") or {}),
            actor_id=data.get("actorId"),
            tenant_id=data.get("tenantId"),
            hops=int(data.get("hops") or 0),
        )
