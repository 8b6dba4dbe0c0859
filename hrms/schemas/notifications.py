import json
import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import ConfigDict, Field, field_validator

from .common import CamelModel


NotificationType = Literal["info", "warning", "success", "error"]


class NotificationListQuery(CamelModel):
    is_read: Optional[bool] = None
    type: Optional[NotificationType] = None
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)


class NotificationCreate(CamelModel):
    user_id: Optional[uuid.UUID] = None  # defaults to the caller
    company_id: Optional[uuid.UUID] = None
    type: NotificationType = "info"
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    data: Optional[Any] = None

    def data_as_json(self) -> Optional[str]:
        if self.data is None:
            return None
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, ensure_ascii=False)


class NotificationOut(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    company_id: Optional[uuid.UUID] = None
    type: str
    title: str
    message: str
    data: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

    @field_validator("is_read", mode="before")
    @classmethod
    def none_is_unread(cls, v):
        return bool(v)
