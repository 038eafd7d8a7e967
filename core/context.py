"""
Caller-supplied memory context objects for core services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import core.config as config


def resolve_agent_id(agent_id: Any) -> Any:
    """Canonicalize an agent id: "default" and numeric strings become ints."""
    if agent_id is None or agent_id == "default":
        return config.DEFAULT_AGENT_ID
    if isinstance(agent_id, bool):
        return agent_id
    if isinstance(agent_id, str):
        stripped = agent_id.strip()
        if stripped.isdigit():
            return int(stripped)
        return stripped
    return agent_id


@dataclass(frozen=True)
class MemoryContext:
    agent_id: Any = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    domain: Optional[str] = None
    attributes: dict = field(default_factory=dict)

    @staticmethod
    def from_value(value: Optional[Mapping[str, Any]]) -> "MemoryContext":
        """Accept snake_case or camelCase keys; unknown keys land in attributes."""
        if isinstance(value, MemoryContext):
            return value
        data = dict(value or {})
        agent_id = data.pop("agent_id", data.pop("agentId", None))
        user_id = data.pop("user_id", data.pop("userId", None))
        session_id = data.pop("session_id", data.pop("sessionId", None))
        domain = data.pop("domain", None)
        return MemoryContext(
            agent_id=resolve_agent_id(agent_id),
            user_id=str(user_id) if user_id is not None else None,
            session_id=str(session_id) if session_id else None,
            domain=domain,
            attributes=data,
        )

    def get(self, key: str, default: Any = None) -> Any:
        if key in {"agent_id", "user_id", "session_id", "domain"}:
            value = getattr(self, key)
            return default if value is None else value
        return self.attributes.get(key, default)

    def as_dict(self) -> dict:
        payload = dict(self.attributes)
        payload.update(
            {
                "agent_id": self.agent_id,
                "user_id": self.user_id,
                "session_id": self.session_id,
                "domain": self.domain,
            }
        )
        return payload
