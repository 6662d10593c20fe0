"""
Sync status and mapping request/response schemas.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from core.domain.mapping import PaymentType, is_mapping_active


class SyncOptions(BaseModel):
    """Runtime options shown on the status endpoint."""

    log_days: int = Field(..., description="Days sync log entries are kept")
    admin_email: str | None = Field(None, description="Notification recipient")


class SyncStatusResponse(BaseModel):
    """Readiness of the ThriveCart → MemberPress integration."""

    version: str
    memberpress_detected: bool = Field(..., description="MemberPress REST API reachable")
    secret_configured: bool = Field(..., description="ThriveCart secret is set")
    api_connected: bool = Field(..., description="MemberPress accepted the API key")
    active_mappings: int = Field(..., description="Active mappings with at least one product id")
    options: SyncOptions


class MappingIn(BaseModel):
    """One mapping table entry as edited by an administrator."""

    model_config = ConfigDict(extra="allow")

    tc_product_ids: list[str] = Field(default_factory=list)
    tc_product_id: str | None = Field(None, description="Legacy comma-separated product ids")
    membership_id: int = Field(..., gt=0)
    payment_type: PaymentType = PaymentType.ANY
    label: str = ""
    active: bool | int | str = "1"

    @field_validator("tc_product_ids", mode="before")
    @classmethod
    def coerce_product_ids(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, (str, int)):
            v = str(v).split(",")
        return [str(pid).strip() for pid in v if str(pid).strip()]

    @model_validator(mode="after")
    def merge_legacy_ids(self) -> "MappingIn":
        if not self.tc_product_ids and self.tc_product_id:
            self.tc_product_ids = self.coerce_product_ids(self.tc_product_id)
        if not self.tc_product_ids and is_mapping_active({"active": self.active}):
            raise ValueError("Active mappings need at least one ThriveCart product ID")
        return self


class MappingsUpdate(BaseModel):
    """Replacement mapping table, in priority order."""

    mappings: list[MappingIn]


class MappingsResponse(BaseModel):
    """Stored mapping table plus overlap warnings."""

    mappings: list[dict[str, Any]]
    active_mappings: int
    warnings: list[str] = Field(default_factory=list)


class SyncOptionsUpdate(BaseModel):
    """Options an administrator may change; omitted fields are left as they are."""

    admin_email: Optional[EmailStr] = Field(None, description="Notification recipient; null clears it")
    log_days: Optional[int] = Field(None, ge=1, le=365, description="Log retention in days")


class SyncLogEntryResponse(BaseModel):
    """One derived sync log row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    event_type: Optional[str] = None
    state: str
    ok: bool
    customer_email: Optional[str] = None
    product_id: Optional[str] = None
    member_id: Optional[int] = None
    membership_id: Optional[int] = None
    action_type: Optional[str] = None
    error: Optional[str] = None
    results: Optional[Any] = None


class SyncLogListResponse(BaseModel):
    entries: list[SyncLogEntryResponse]
    total: int


class SyncLogClearResponse(BaseModel):
    deleted: int


class SimulatedCancellationRequest(BaseModel):
    """Run the cancellation flow for one member and membership."""

    email: EmailStr
    membership_id: int = Field(..., gt=0)
