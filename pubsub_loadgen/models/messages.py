from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    SUBSCRIBE = "subscribe"
    PUBLISH = "publish"
    ACK = "ack"
    EVENT = "event"
    ERROR = "error"
    INFO = "info"


class SubscribeMessage(BaseModel):
    type: MessageType = Field(default=MessageType.SUBSCRIBE)
    topic: str = Field(..., min_length=1, max_length=255)
    last_n: int = Field(default=0, ge=0, le=1000)


class PublishMessage(BaseModel):
    type: MessageType = Field(default=MessageType.PUBLISH)
    topic: str = Field(..., min_length=1, max_length=255)
    data: Any


class AckMessage(BaseModel):
    type: MessageType = Field(default=MessageType.ACK)
    request_type: str
    topic: Optional[str] = None
    message: Optional[str] = None


class EventMessage(BaseModel):
    type: MessageType = Field(default=MessageType.EVENT)
    topic: str
    data: Any
    message_id: Optional[str] = None


class ErrorMessage(BaseModel):
    type: MessageType = Field(default=MessageType.ERROR)
    code: str
    message: str
    details: Optional[dict] = None


class InfoMessage(BaseModel):
    type: MessageType = Field(default=MessageType.INFO)
    message: str
    details: Optional[dict] = None
