"""
Wire models for the configuration HTTP surface.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.models import utcnow


class Envelope(BaseModel):
    """Every response is {success, data?, error?, platform?, timestamp}."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    platform: Optional[Dict[str, Any]] = None
    sync_status: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class CredentialsRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    api_key: str
    account_id: int
    base_url: Optional[str] = None
    country: Optional[str] = None

    @field_validator('api_key')
    @classmethod
    def api_key_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('apiKey cannot be empty')
        return v.strip()

    @field_validator('country')
    @classmethod
    def country_must_be_code(cls, v):
        if v is not None and (len(v) != 3 or not v.isalpha()):
            raise ValueError('country must be a 3-letter code')
        return v.upper() if v else v


class HealthData(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    healthy: bool
    server_available: bool
    schema_version: int
    version: str
    error: Optional[str] = None
