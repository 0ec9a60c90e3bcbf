"""Chat schemas"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime
import json


ChatKind = Literal["normal", "transcription", "email"]
ChatStatus = Literal["idle", "loading", "error"]


class Attachment(BaseModel):
    """Microsoft 365 / Google resource attached to a user turn"""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Resource ID in the source system")
    name: str = Field(..., description="Display name")
    type: str = Field(..., description="Resource type: file, email, event, ...")
    url: Optional[str] = Field(None, description="Web URL")
    source: Optional[str] = Field(None, description="sharepoint, outlook, teams, google, ...")


class Turn(BaseModel):
    """One message in a conversation"""
    role: Literal["user", "assistant"] = Field(..., description="Role: user or assistant")
    content: str = Field(..., description="Message text")
    attachments: Optional[List[Attachment]] = Field(None, description="Attached resources")


class ChatCompletionRequest(BaseModel):
    """Body of the completion endpoint"""
    messages: List[Turn] = Field(..., description="Full conversation")
    model: str = Field(default="gpt-4o", min_length=1, description="Model name")


class ChatContent(BaseModel):
    """JSON document stored in chat_history.content"""
    messages: List[Turn] = Field(default_factory=list)
    lastMessage: str = ""


class ChatHistoryRecord(BaseModel):
    """Chat history row as seen by the session layer"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: ChatKind = "normal"
    title: str
    content: ChatContent = Field(default_factory=ChatContent)
    thread_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="meta")
    bookmarked: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("content", mode="before")
    @classmethod
    def parse_content(cls, v):
        if v is None:
            return ChatContent()
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except json.JSONDecodeError:
                return ChatContent()
        if isinstance(v, dict):
            # Drop malformed entries instead of rejecting the whole chat
            raw_messages = v.get("messages") or []
            messages = []
            for msg in raw_messages if isinstance(raw_messages, list) else []:
                if isinstance(msg, dict) and "role" in msg and "content" in msg:
                    try:
                        messages.append(Turn.model_validate(msg))
                    except ValueError:
                        continue
            return ChatContent(messages=messages, lastMessage=str(v.get("lastMessage") or ""))
        return v

    @field_validator("metadata", mode="before")
    @classmethod
    def parse_metadata(cls, v):
        if v is None:
            return None
        if isinstance(v, dict):
            return v
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError:
                return None
            return parsed if isinstance(parsed, dict) else None
        return None
