"""Shared plugin types and helpers."""

from .contracts import KindStrategy, PluginChannel
from .protocol import INIT_ID, SHUTDOWN_ID, PluginRequest, PluginResponse, shutdown_request
from .serialization import (
    LineFramer,
    decode_request_line,
    decode_response_line,
    encode_request_line,
    encode_response_line,
    safe_dict,
    to_response_error,
)
from .types import NativeEntry, PluginKind, PluginManifest, PluginStatus, parse_manifest

__all__ = [
    "INIT_ID",
    "SHUTDOWN_ID",
    "KindStrategy",
    "LineFramer",
    "NativeEntry",
    "PluginChannel",
    "PluginKind",
    "PluginManifest",
    "PluginRequest",
    "PluginResponse",
    "PluginStatus",
    "decode_request_line",
    "decode_response_line",
    "encode_request_line",
    "encode_response_line",
    "parse_manifest",
    "safe_dict",
    "shutdown_request",
    "to_response_error",
]
