import json
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import field_validator
from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceInstanceBase(SQLModel):
    org_id: Optional[str] = None
    space_id: Optional[str] = None


class ServiceInstanceORM(ServiceInstanceBase, table=True):
    __tablename__ = "service_instance"

    # Caller-supplied; the primary key is what serializes concurrent provisions.
    service_instance_id: str = Field(primary_key=True)
    org_id: Optional[str] = Field(default=None, nullable=True)
    space_id: Optional[str] = Field(default=None, nullable=True)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class ServiceInstanceRead(ServiceInstanceBase):
    service_instance_id: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands timestamps back without an offset.
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    def same_scope(self, *, org_id: Optional[str], space_id: Optional[str]) -> bool:
        return self.org_id == org_id and self.space_id == space_id


class ServiceInstanceProvision(SQLModel):
    """PUT body. Any other broker fields (service_id, plan_id, ...) are ignored."""
    organization_guid: Optional[str] = None
    space_guid: Optional[str] = None

    @field_validator("organization_guid", "space_guid", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)


class ProvisionResponse(SQLModel):
    dashboard_url: str = ""
