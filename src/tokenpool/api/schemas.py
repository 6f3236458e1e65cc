"""Request DTOs for the HTTP surface."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(min_length=1, max_length=512)


class IngestRequest(BaseModel):
    """Either a newline separated ``tokens`` blob or an explicit ``values`` list."""

    tokens: Optional[str] = None
    values: Optional[List[str]] = None

    @model_validator(mode="after")
    def _require_payload(self) -> IngestRequest:
        if self.tokens is None and self.values is None:
            raise ValueError("tokens or values is required")
        return self


class DeleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    anchor: str = Field(min_length=1, validation_alias=AliasChoices("anchor", "startTokenId", "start_token_id"))
    count: int


class CreateClaimantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    key: str = Field(min_length=1, max_length=512)
    expires_at: datetime = Field(validation_alias=AliasChoices("expiresAt", "expires_at"))

    @field_validator("expires_at")
    @classmethod
    def _require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("expiresAt must carry a timezone offset")
        return value


__all__ = ["CreateClaimantRequest", "DeleteRequest", "IngestRequest", "LoginRequest"]
