"""Wire protocol models for host <-> plugin line-delimited JSON."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

INIT_ID = "init"
SHUTDOWN_ID = "shutdown"
SHUTDOWN_ACTION = "shutdown"
READY_STATUS = "ready"


@dataclass(slots=True)
class PluginRequest:
    """Host -> plugin request frame."""

    id: str
    action: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PluginResponse:
    """Plugin -> host frame (response to a request, or an unsolicited event)."""

    id: str
    success: bool
    data: Any = None
    error: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_ready_signal(self) -> bool:
        return (
            self.id == INIT_ID
            and self.success
            and isinstance(self.data, dict)
            and self.data.get("status") == READY_STATUS
        )


def shutdown_request() -> PluginRequest:
    return PluginRequest(id=SHUTDOWN_ID, action=SHUTDOWN_ACTION, payload={})
