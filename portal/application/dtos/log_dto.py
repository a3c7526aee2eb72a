# portal/application/dtos/log_dto.py

"""
DTOs for client-side log ingestion and the admin log listing.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator

from portal.application.dtos.base_dto import CustomBaseModel
from portal.domain.models.log_domain_model import LogLevel

MAX_MESSAGE_LENGTH = 5000


class ClientErrorLog(CustomBaseModel):
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    stack: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


class ClientMessageLog(CustomBaseModel):
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    level: LogLevel = LogLevel.INFO
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None

    @field_validator("level", mode="before")
    def normalize_level(cls, v):
        return LogLevel.parse(v) if v is not None else LogLevel.INFO


class AcceptedResponse(CustomBaseModel):
    success: bool = True


class LogRecordOutput(CustomBaseModel):
    id: int
    level: str
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    user_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    @field_validator("metadata", mode="before")
    def decode_metadata(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v) if v else {}
            except ValueError:
                return {"raw": v}
        return v or {}


class LogPage(CustomBaseModel):
    items: List[LogRecordOutput]
    total: int
    page: int
    size: int
