from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Literal, Optional, Union
from urllib.parse import urlsplit

JobStatus = Literal["queued", "uploading", "failed"]
FieldKind = Literal["text", "file"]


class RequestCategory(str, Enum):
    STATIC = "static"
    PHOTO = "photo"
    API = "api"
    PHOTO_UPLOAD = "photo-upload"
    GENERIC = "generic"


@dataclass(frozen=True, slots=True)
class InterceptedRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    # Declared fetch destination, e.g. "image" (Sec-Fetch-Dest).
    destination: str = ""

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    def header(self, name: str, default: str = "") -> str:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default


@dataclass(slots=True)
class AgentResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    reason: str = ""
    # True when built by the agent instead of received from upstream.
    synthetic: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> object:
        return json.loads(self.body.decode("utf-8"))

    def text(self) -> str:
        return self.body.decode("utf-8")


def text_response(status: int, text: str, *, reason: str = "") -> AgentResponse:
    return AgentResponse(
        status=status,
        headers={"Content-Type": "text/plain; charset=utf-8"},
        body=text.encode("utf-8"),
        reason=reason,
        synthetic=True,
    )


def json_response(status: int, payload: dict) -> AgentResponse:
    return AgentResponse(
        status=status,
        headers={"Content-Type": "application/json"},
        body=json.dumps(payload).encode("utf-8"),
        synthetic=True,
    )


@dataclass(frozen=True, slots=True)
class FormField:
    """One multipart entry. Order within a job is significant."""

    name: str
    kind: FieldKind
    value: Union[str, bytes]
    filename: Optional[str] = None
    content_type: Optional[str] = None


@dataclass(slots=True)
class UploadJob:
    id: int
    url: str
    method: str
    fields: list[FormField]
    headers: Dict[str, str]
    timestamp: int
    status: JobStatus = "queued"
    attempts: int = 0
    last_error: str = ""


@dataclass(frozen=True, slots=True)
class NewUpload:
    """Everything needed to enqueue a job; the store assigns id and status."""

    url: str
    method: str
    fields: list[FormField]
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class SyncReport:
    tag: str
    attempted: int = 0
    completed: int = 0
    failed: int = 0
    dead_lettered: int = 0
    skipped: bool = False
    # Set when register() was called while this run held the queue.
    registered_during_run: bool = False

    @property
    def drained(self) -> bool:
        return not self.skipped and self.failed == 0 and not self.registered_during_run
