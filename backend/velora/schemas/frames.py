"""
Relay frames exchanged over the chat WebSocket.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Literal, Union


class ChatFrame(BaseModel):
    """Inbound frame: one user message for one conversation."""
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(..., alias="conversationId", min_length=1)
    content: str = Field(..., min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)


class TokenFrame(BaseModel):
    """One text increment from the completion provider."""
    type: Literal["token"] = "token"
    content: str


class DoneFrame(BaseModel):
    """Terminal frame for a completed exchange."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["done"] = "done"
    message_id: str = Field(..., alias="messageId")
    tokens: int


class ErrorFrame(BaseModel):
    """Terminal frame for a failed exchange."""
    type: Literal["error"] = "error"
    error: str


OutboundFrame = Union[TokenFrame, DoneFrame, ErrorFrame]


def encode_frame(frame: OutboundFrame) -> str:
    """Serialize an outbound frame with its wire (camelCase) field names."""
    return frame.model_dump_json(by_alias=True)
