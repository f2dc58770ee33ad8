"""Offline agent: request interception, response caching and deferred photo uploads."""

from __future__ import annotations

from typing import TYPE_CHECKING

from locations_offline.agent.models import (
    AgentResponse,
    FormField,
    InterceptedRequest,
    RequestCategory,
    UploadJob,
)

if TYPE_CHECKING:
    from locations_offline.agent.agent import OfflineAgent

__all__ = [
    "AgentResponse",
    "FormField",
    "InterceptedRequest",
    "OfflineAgent",
    "RequestCategory",
    "UploadJob",
]


def __getattr__(name: str):
    if name == "OfflineAgent":
        from locations_offline.agent.agent import OfflineAgent as _OfflineAgent

        return _OfflineAgent
    raise AttributeError(name)
