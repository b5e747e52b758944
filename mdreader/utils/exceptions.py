"""
Exception hierarchy and error helpers for mdreader.

Provides:
- Base exception with error code, category and details
- Plugin bridge / loader error taxonomy
- Safe error message formatting (no token leak from launch args)
"""

from __future__ import annotations

import asyncio
import json
import re
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """Error categories for classification."""
    RECOVERABLE = "recoverable"
    RETRYABLE = "retryable"
    FATAL = "fatal"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    TIMEOUT = "timeout"


class MdReaderError(Exception):
    """Base exception for all mdreader errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ManifestError(MdReaderError):
    """Plugin manifest could not be parsed or validated."""

    def __init__(self, message: str, source: str | None = None):
        details = {"source": source} if source else {}
        super().__init__(message, code="MANIFEST_INVALID", category=ErrorCategory.VALIDATION, details=details)


class PluginBridgeError(MdReaderError):
    """Plugin communication error scoped to one plugin."""

    def __init__(
        self,
        plugin_id: str,
        message: str,
        code: str = "PLUGIN_BRIDGE_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        merged = {"plugin_id": plugin_id}
        merged.update(details or {})
        super().__init__(message, code=code, category=category, details=merged)
        self.plugin_id = plugin_id


class SpawnError(PluginBridgeError):
    """Plugin process could not be launched."""

    def __init__(self, plugin_id: str, binary: str, reason: str):
        super().__init__(
            plugin_id,
            f"Failed to spawn plugin process '{binary}': {reason}",
            code="SPAWN_FAILED",
            details={"binary": binary},
        )


class HandshakeTimeoutError(PluginBridgeError):
    """Plugin did not send its ready signal in time."""

    def __init__(self, plugin_id: str, timeout_seconds: float):
        super().__init__(
            plugin_id,
            f"Plugin startup timeout after {timeout_seconds}s",
            code="HANDSHAKE_TIMEOUT",
            category=ErrorCategory.TIMEOUT,
            details={"timeout_seconds": timeout_seconds},
        )


class RequestTimeoutError(PluginBridgeError):
    """One request exceeded its deadline."""

    def __init__(self, plugin_id: str, action: str, timeout_seconds: float):
        super().__init__(
            plugin_id,
            f"Request timeout: {action}",
            code="REQUEST_TIMEOUT",
            category=ErrorCategory.TIMEOUT,
            details={"action": action, "timeout_seconds": timeout_seconds},
        )
        self.action = action


class ProcessExitedError(PluginBridgeError):
    """Plugin process terminated while calls were outstanding."""

    def __init__(self, plugin_id: str, exit_code: int | None = None):
        super().__init__(
            plugin_id,
            "Plugin process exited",
            code="PROCESS_EXITED",
            category=ErrorCategory.RECOVERABLE,
            details={"exit_code": exit_code},
        )
        self.exit_code = exit_code


class PluginStoppedError(PluginBridgeError):
    """Call was cancelled because the bridge was stopped."""

    def __init__(self, plugin_id: str):
        super().__init__(plugin_id, "Plugin stopped", code="PLUGIN_STOPPED", category=ErrorCategory.RECOVERABLE)


class NotReadyError(PluginBridgeError):
    """Call attempted before the handshake or after stop."""

    def __init__(self, plugin_id: str):
        super().__init__(plugin_id, "Plugin not ready", code="NOT_READY", category=ErrorCategory.RECOVERABLE)


class PluginBusyError(PluginBridgeError):
    """Too many calls in flight for one plugin."""

    def __init__(self, plugin_id: str, max_pending: int):
        super().__init__(
            plugin_id,
            f"Too many pending requests (limit {max_pending})",
            code="TOO_MANY_PENDING",
            category=ErrorCategory.RETRYABLE,
            details={"max_pending": max_pending},
        )


class MalformedFrameError(PluginBridgeError):
    """A stream line is not a valid protocol frame. Never leaves the framer."""

    def __init__(self, plugin_id: str, line: str, reason: str):
        super().__init__(
            plugin_id,
            f"Malformed frame: {reason}",
            code="MALFORMED_FRAME",
            category=ErrorCategory.VALIDATION,
            details={"line": line[:200]},
        )


class PluginResponseError(PluginBridgeError):
    """Plugin answered a request with success=false."""

    def __init__(
        self,
        plugin_id: str,
        action: str,
        message: str,
        code: str = "PLUGIN_ERROR",
        category: ErrorCategory = ErrorCategory.RECOVERABLE,
    ):
        super().__init__(plugin_id, message, code=code, category=category, details={"action": action})
        self.action = action


class UnknownActionError(PluginResponseError):
    """Plugin does not implement the requested action."""

    def __init__(self, plugin_id: str, action: str, message: str | None = None):
        super().__init__(
            plugin_id,
            action,
            message or f"Unknown action: {action}",
            code="UNKNOWN_ACTION",
            category=ErrorCategory.VALIDATION,
        )


class PluginNotFoundError(MdReaderError):
    """No manifest is known for the plugin id."""

    def __init__(self, plugin_id: str, message: str | None = None):
        super().__init__(
            message or f"Plugin not found: {plugin_id}",
            code="PLUGIN_NOT_FOUND",
            category=ErrorCategory.NOT_FOUND,
            details={"plugin_id": plugin_id},
        )
        self.plugin_id = plugin_id


class PluginDisabledError(MdReaderError):
    """Plugin is disabled by host configuration."""

    def __init__(self, plugin_id: str):
        super().__init__(
            f"Plugin disabled: {plugin_id}",
            code="PLUGIN_DISABLED",
            category=ErrorCategory.PERMISSION,
            details={"plugin_id": plugin_id},
        )
        self.plugin_id = plugin_id


class UnknownPluginKindError(MdReaderError):
    """Manifest declares a kind no strategy handles."""

    def __init__(self, plugin_id: str, kind: str):
        super().__init__(
            f"Unknown plugin kind: {kind}",
            code="UNKNOWN_PLUGIN_KIND",
            category=ErrorCategory.VALIDATION,
            details={"plugin_id": plugin_id, "kind": kind},
        )


class KindNotImplementedError(PluginBridgeError):
    """Plugin kind is a declared extension point without a runtime yet."""

    def __init__(self, plugin_id: str, kind: str):
        super().__init__(
            plugin_id,
            f"{kind} plugins not implemented",
            code="KIND_NOT_IMPLEMENTED",
            details={"kind": kind},
        )
        self.kind = kind


_SENSITIVE_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|auth)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"[a-zA-Z0-9]{32,}"),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Remove sensitive information from error messages."""
    sanitized = message
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def classify_exception(exc: Exception) -> tuple[str, ErrorCategory, bool]:
    """
    Classify an exception and return (error_code, category, should_retry).

    Returns:
        Tuple of (error_code, category, should_retry)
    """
    if isinstance(exc, MdReaderError):
        return exc.code, exc.category, exc.category == ErrorCategory.RETRYABLE

    if isinstance(exc, FileNotFoundError):
        return "FILE_NOT_FOUND", ErrorCategory.NOT_FOUND, False

    if isinstance(exc, PermissionError):
        return "PERMISSION_DENIED", ErrorCategory.PERMISSION, False

    if isinstance(exc, asyncio.TimeoutError):
        return "TIMEOUT", ErrorCategory.TIMEOUT, True

    if isinstance(exc, json.JSONDecodeError):
        return "JSON_PARSE_ERROR", ErrorCategory.VALIDATION, False

    if isinstance(exc, ValueError):
        return "INVALID_VALUE", ErrorCategory.VALIDATION, False

    if isinstance(exc, ConnectionError):
        return "CONNECTION_ERROR", ErrorCategory.RETRYABLE, True

    return "INTERNAL_ERROR", ErrorCategory.FATAL, False
