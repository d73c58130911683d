from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NoAction(BaseModel):
    kind: Literal["none"] = "none"


class NavigateAction(BaseModel):
    # Client-side navigation hint; never an executable reference
    kind: Literal["navigate"] = "navigate"
    route: str
    params: dict[str, str] = Field(default_factory=dict)
    label: Optional[str] = None


NotificationAction = Annotated[Union[NoAction, NavigateAction], Field(discriminator="kind")]


class NotificationRecord(BaseModel):
    id: str
    tenant_id: str
    type: NotificationType = NotificationType.INFO
    title: str
    message: str
    read_by: list[str] = Field(default_factory=list)
    deleted_by: list[str] = Field(default_factory=list)
    action: NotificationAction = Field(default_factory=NoAction)
    created_at: datetime

    @field_validator("action", mode="before")
    @classmethod
    def _default_action(cls, value: Any) -> Any:
        return {"kind": "none"} if value is None else value

    @field_validator("read_by", "deleted_by", mode="before")
    @classmethod
    def _dedupe_recipients(cls, value: Any) -> Any:
        if value is None:
            return []
        # Keep first-seen order, drop repeats
        return list(dict.fromkeys(value))

    def is_visible_to(self, user_id: str) -> bool:
        return user_id not in self.deleted_by

    def is_read_by(self, user_id: str) -> bool:
        return user_id in self.read_by

    def is_unread_for(self, user_id: str) -> bool:
        return self.is_visible_to(user_id) and not self.is_read_by(user_id)


class NotificationItem(BaseModel):
    """
    Per-user projection of a notification used by UI screens.
    """

    id: str
    type: NotificationType
    title: str
    message: str
    read: bool
    action: NotificationAction = Field(default_factory=NoAction)
    created_at: datetime

    @classmethod
    def for_user(cls, record: NotificationRecord, user_id: str) -> "NotificationItem":
        return cls(
            id=record.id,
            type=record.type,
            title=record.title,
            message=record.message,
            read=record.is_read_by(user_id),
            action=record.action,
            created_at=record.created_at,
        )


class PushPlatform(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class PushTokenRecord(BaseModel):
    id: str
    user_id: str
    token: str
    platform: PushPlatform
    device_id: Optional[str] = None
    device_token: Optional[str] = None
    last_registered_at: datetime
    created_at: datetime


class RegistrationAction(str, Enum):
    CREATED = "created"
    EXISTING = "existing"


class RegistrationResult(BaseModel):
    success: bool
    action: Optional[RegistrationAction] = None
    record: Optional[PushTokenRecord] = None
