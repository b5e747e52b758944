"""Example native plugin for mdreader.

Reads one JSON request per line on stdin and writes one JSON response per
line on stdout. Diagnostics go to stderr.

Flags:
  --no-handshake   never send the ready frame
  --noise          write a garbage line before the ready frame
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any

VERSION = "0.1.0"


def emit(frame: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(frame, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def handle(action: str, payload: dict[str, Any]) -> dict[str, Any] | None:
    if action == "ping":
        return {"pong": True}
    if action == "echo":
        return {"echo": payload}
    if action == "slow":
        time.sleep(float(payload.get("seconds", 1.0)))
        return {"slept": True}
    if action == "notify":
        # Unsolicited event first, then the correlated response.
        emit({"id": "event-1", "success": True, "data": {"event": "notified"}})
        return {"sent": True}
    if action == "crash":
        sys.stderr.write("crashing on request\n")
        sys.stderr.flush()
        sys.exit(int(payload.get("code", 3)))
    raise LookupError(f"Unknown action: {action}")


def main(argv: list[str]) -> int:
    if "--noise" in argv:
        sys.stdout.write("not json at all\n")
        sys.stdout.flush()
    if "--no-handshake" not in argv:
        emit({"id": "init", "success": True, "data": {"status": "ready", "version": VERSION}})
    for raw in sys.stdin:
        line = raw.strip()
        if not line:
            continue
        try:
            request = json.loads(line)
        except json.JSONDecodeError as exc:
            emit({"id": "unknown", "success": False, "error": f"Invalid message: {exc}"})
            continue
        req_id = str(request.get("id", "unknown"))
        action = str(request.get("action", ""))
        payload = request.get("payload") if isinstance(request.get("payload"), dict) else {}
        if action == "shutdown":
            emit({"id": req_id, "success": True, "data": {"status": "shutting_down"}})
            return 0
        try:
            data = handle(action, payload)
        except LookupError as exc:
            emit({"id": req_id, "success": False, "error": str(exc)})
            continue
        emit({"id": req_id, "success": True, "data": data})
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
