"""
Backend-owned user records.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    """Marketplace roles."""
    CUSTOMER = "customer"
    PROVIDER = "provider"


class UserProfile(BaseModel):
    """Authoritative application profile returned by the backend."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    name: str
    email: str
    phone: str = ""
    role: UserRole
    avatar: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    def to_cache(self) -> str:
        """Serialize for the credential store."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_cache(cls, raw: str) -> "UserProfile":
        return cls.model_validate_json(raw)

    @classmethod
    def from_backend(cls, payload: Dict[str, Any]) -> "UserProfile":
        """Build from a backend body, which wraps the record in ``user``."""
        return cls.model_validate(payload.get("user", payload))


class ProfileFields(BaseModel):
    """Fields the client supplies when registering a profile."""

    name: str
    email: str
    phone: str = ""
    role: UserRole
