"""Errors raised when a dashboard feature is used without the tier that unlocks it."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class FeatureGateError(Exception):
    """A gating failure surfaced to API callers as a 403."""

    code: str
    message: str
    status_code: int = status.HTTP_403_FORBIDDEN
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @classmethod
    def missing_flag(cls, flag: str, *, code: str = "entitlement_required", message: Optional[str] = None) -> "FeatureGateError":
        return cls(
            code=code,
            message=message or f"Entitlement '{flag}' is required.",
            detail={"missing_entitlement": flag},
        )

    @classmethod
    def missing_tier(cls, tier: str, display_name: str) -> "FeatureGateError":
        return cls(
            code="tier_required",
            message=f"An active {display_name} plan is required.",
            detail={"required_tier": tier},
        )

    @property
    def payload(self) -> Mapping[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            body.update(self.detail)
        return body

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))
