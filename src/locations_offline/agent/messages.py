from __future__ import annotations

from typing import Annotated, Dict, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from locations_offline.agent.form_codec import decode_fields
from locations_offline.agent.models import FormField

UPLOAD_COMPLETED = "UPLOAD_COMPLETED"
UPLOAD_FAILED = "UPLOAD_FAILED"


class QueuedFormField(BaseModel):
    """Wire form of a FormField; file values are base64."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    kind: Literal["text", "file"] = "text"
    value: str
    filename: Optional[str] = None
    content_type: Optional[str] = None


class QueuedUploadData(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Defaults to the configured upload endpoint.
    url: Optional[str] = None
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    fields: Sequence[QueuedFormField]

    def to_fields(self) -> list[FormField]:
        return decode_fields([f.model_dump() for f in self.fields])


class QueuePhotoUploadMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["QUEUE_PHOTO_UPLOAD"]
    data: QueuedUploadData


class GetOfflineStatusMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["GET_OFFLINE_STATUS"]


class ClearCacheMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["CLEAR_CACHE"]


AgentMessage = Annotated[
    Union[QueuePhotoUploadMessage, GetOfflineStatusMessage, ClearCacheMessage],
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter[AgentMessage] = TypeAdapter(AgentMessage)


def parse_message(payload: object) -> AgentMessage:
    """Validate a page message. Raises pydantic.ValidationError for unknown or malformed input."""
    return _message_adapter.validate_python(payload)
