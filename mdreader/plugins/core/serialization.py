"""Serialization helpers for plugin protocol frames."""

from __future__ import annotations

import codecs
import json
from typing import Any

from mdreader.utils.exceptions import MalformedFrameError, PluginResponseError, UnknownActionError

from .protocol import PluginRequest, PluginResponse

UNKNOWN_ACTION_PREFIX = "unknown action"


def safe_dict(value: Any) -> dict[str, Any]:
    """Return the value when dict-like, otherwise an empty dict."""
    return value if isinstance(value, dict) else {}


def encode_request_line(request: PluginRequest) -> str:
    """Encode a request frame into one line of JSON (no terminator)."""
    payload = {"id": request.id, "action": request.action, "payload": request.payload}
    return json.dumps(payload, ensure_ascii=False)


def encode_response_line(response: PluginResponse) -> str:
    """Encode a response frame into one line of JSON (no terminator)."""
    payload: dict[str, Any] = {"id": response.id, "success": response.success}
    if response.success:
        payload["data"] = response.data
    else:
        payload["error"] = response.error or "Unknown error"
    return json.dumps(payload, ensure_ascii=False)


def decode_request_line(line: str) -> PluginRequest:
    """Decode one request line; raises ValueError on invalid input."""
    row = json.loads(line)
    if not isinstance(row, dict):
        raise ValueError("request must be a JSON object")
    req_id = row.get("id")
    action = row.get("action")
    if not isinstance(req_id, str) or not isinstance(action, str):
        raise ValueError("request requires string id and action")
    return PluginRequest(id=req_id, action=action, payload=safe_dict(row.get("payload")))


def decode_response_line(line: str, *, plugin_id: str = "unknown") -> PluginResponse:
    """Decode one inbound line into a PluginResponse or raise MalformedFrameError."""
    try:
        row = json.loads(line)
    except json.JSONDecodeError as exc:
        raise MalformedFrameError(plugin_id, line, f"invalid JSON ({exc.msg})") from exc
    if not isinstance(row, dict):
        raise MalformedFrameError(plugin_id, line, "frame is not a JSON object")
    msg_id = row.get("id")
    if not isinstance(msg_id, str) or not msg_id:
        raise MalformedFrameError(plugin_id, line, "frame has no string id")
    error = row.get("error")
    return PluginResponse(
        id=msg_id,
        success=row.get("success") is True,
        data=row.get("data"),
        error=str(error) if error is not None else None,
        raw=row,
    )


def to_response_error(plugin_id: str, action: str, response: PluginResponse) -> PluginResponseError:
    """Convert a success=false response into the matching exception."""
    message = response.error or "Unknown error"
    if message.strip().lower().startswith(UNKNOWN_ACTION_PREFIX):
        return UnknownActionError(plugin_id, action, message)
    return PluginResponseError(plugin_id, action, message)


class LineFramer:
    """Reassembles newline-delimited frames from arbitrary stream chunks."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def buffer(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[str]:
        """Append a chunk and return every complete, non-blank line."""
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return []
        self._buffer += text
        *complete, self._buffer = self._buffer.split("\n")
        lines: list[str] = []
        for line in complete:
            stripped = line.rstrip("\r")
            if stripped.strip():
                lines.append(stripped)
        return lines

    def reset(self) -> None:
        self._decoder.reset()
        self._buffer = ""
