"""Pydantic models for integration connections."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from unibox.models.enums import IntegrationConnectionStatus, SourceKind
from unibox.models.patch import PatchModel, reject_explicit_null


class IntegrationConnectionModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    connection_id: str
    user_id: str
    source_kind: SourceKind
    status: IntegrationConnectionStatus
    enabled: bool
    failure_message: str | None = None
    last_sync_started_at: datetime | None = None
    last_sync_completed_at: datetime | None = None
    last_sync_failure_message: str | None = None

    @computed_field
    @property
    def sync_status_label(self) -> str:
        if self.last_sync_failure_message:
            return f"last sync failed: {self.last_sync_failure_message}"
        if self.last_sync_completed_at:
            return "ok"
        return "never synced"


class Credentials(BaseModel):
    """A valid credential for one connection, as handed over by the auth layer."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    access_token: str
    token_type: str = "Bearer"
    extra: dict[str, str] | None = None

    def get_headers(self) -> dict[str, str]:
        return {"Authorization": f"{self.token_type} {self.access_token}"}


class IntegrationConnectionCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_kind: SourceKind
    config: dict[str, Any] = Field(default_factory=dict)
    # Name of the secret handle the credential provider resolves
    credential_ref: str | None = None
    enabled: bool = True


class IntegrationConnectionPatch(PatchModel):
    enabled: bool | None = None
    config: dict[str, Any] | None = None
    credential_ref: str | None = None

    @field_validator("enabled")
    @classmethod
    def _enabled_not_null(cls, v):
        return reject_explicit_null(v, "enabled")
