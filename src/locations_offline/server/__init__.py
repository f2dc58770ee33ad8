from __future__ import annotations

from locations_offline.server.app import AGENT_KEY, create_app

__all__ = ["AGENT_KEY", "create_app"]
