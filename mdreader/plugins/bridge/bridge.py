"""Request/response bridge to a single plugin over a line-delimited JSON channel."""

from __future__ import annotations

import asyncio
import itertools
import uuid
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from mdreader.plugins.core.contracts import PluginChannel
from mdreader.plugins.core.protocol import PluginRequest, PluginResponse, shutdown_request
from mdreader.plugins.core.serialization import (
    LineFramer,
    decode_response_line,
    encode_request_line,
    to_response_error,
)
from mdreader.utils.exceptions import (
    HandshakeTimeoutError,
    MalformedFrameError,
    NotReadyError,
    PluginBridgeError,
    PluginBusyError,
    PluginStoppedError,
    ProcessExitedError,
    RequestTimeoutError,
)

DEFAULT_HANDSHAKE_TIMEOUT_SECONDS = 5.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_SHUTDOWN_GRACE_SECONDS = 1.0
DEFAULT_MAX_PENDING = 1024


@dataclass(slots=True)
class PendingCall:
    """One outstanding request awaiting its response."""

    id: str
    action: str
    future: asyncio.Future[Any]
    timeout: float
    timer: asyncio.TimerHandle | None = None


class PluginBridge:
    """Owns one plugin channel: handshake, framing, correlation and shutdown.

    All state is touched only from the event loop thread (reader callbacks,
    timers and ``send``), so no locking is needed within one bridge.
    """

    def __init__(
        self,
        channel: PluginChannel,
        *,
        plugin_id: str = "unknown",
        on_message: Callable[[dict[str, Any]], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        on_ready: Callable[[], None] | None = None,
        on_exit: Callable[[int | None], None] | None = None,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE_SECONDS,
        max_pending: int = DEFAULT_MAX_PENDING,
    ):
        self.plugin_id = plugin_id
        self.on_message = on_message
        self.on_error = on_error
        self.on_ready = on_ready
        self.on_exit = on_exit
        self.handshake_timeout = handshake_timeout
        self.request_timeout = request_timeout
        self.shutdown_grace = shutdown_grace
        self.max_pending = max_pending
        self._channel = channel
        self._framer = LineFramer()
        self._pending: dict[str, PendingCall] = {}
        self._ready = False
        self._spawned = False
        self._stopping = False
        self._stop_requested = False
        self._handshake: asyncio.Future[None] | None = None
        self._kill_handle: asyncio.TimerHandle | None = None
        self._id_prefix = uuid.uuid4().hex[:8]
        self._id_counter = itertools.count(1)

    @property
    def channel(self) -> PluginChannel:
        return self._channel

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_ready(self) -> bool:
        return self._ready

    @property
    def stop_requested(self) -> bool:
        """True once stop() was called; an exit after that is not a crash."""
        return self._stop_requested

    def _next_id(self) -> str:
        return f"{self._id_prefix}-{next(self._id_counter)}"

    async def start(self) -> None:
        """Launch the channel and wait for the plugin's ready handshake."""
        if self._ready:
            return
        loop = asyncio.get_running_loop()
        self._stopping = False
        self._stop_requested = False
        self._framer.reset()
        handshake: asyncio.Future[None] = loop.create_future()
        self._handshake = handshake
        try:
            await self._channel.spawn(
                on_data=self._handle_data,
                on_exit=self._handle_exit,
                on_stderr=self._handle_stderr,
            )
        except PluginBridgeError as exc:
            self._handshake = None
            self._notify(self.on_error, exc)
            raise
        self._spawned = True
        try:
            await asyncio.wait_for(handshake, timeout=self.handshake_timeout)
        except asyncio.TimeoutError:
            err = HandshakeTimeoutError(self.plugin_id, self.handshake_timeout)
            logger.warning("[{}] {}", self.plugin_id, err.message)
            self._handshake = None
            self._channel.kill()
            self._notify(self.on_error, err)
            raise err from None
        except PluginBridgeError as exc:
            if not isinstance(exc, PluginStoppedError):
                self._notify(self.on_error, exc)
            raise
        finally:
            self._handshake = None
        logger.info("[{}] plugin ready", self.plugin_id)
        self._notify(self.on_ready)

    async def send(
        self,
        action: str,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send one request and wait for its correlated response data.

        ``timeout`` is in seconds and defaults to ``request_timeout``.
        """
        if not self._ready:
            raise NotReadyError(self.plugin_id)
        if len(self._pending) >= self.max_pending:
            raise PluginBusyError(self.plugin_id, self.max_pending)
        loop = asyncio.get_running_loop()
        call_id = self._next_id()
        wait_seconds = self.request_timeout if timeout is None else timeout
        call = PendingCall(id=call_id, action=action, future=loop.create_future(), timeout=wait_seconds)
        call.timer = loop.call_later(wait_seconds, self._expire, call_id)
        self._pending[call_id] = call
        line = encode_request_line(PluginRequest(id=call_id, action=action, payload=dict(payload or {})))
        try:
            try:
                await self._channel.write(line)
            except (OSError, RuntimeError) as exc:
                self._settle(
                    call_id,
                    error=PluginBridgeError(
                        self.plugin_id,
                        f"Failed to write request '{action}': {exc}",
                        code="WRITE_FAILED",
                        details={"action": action},
                    ),
                )
            return await call.future
        finally:
            # Caller cancellation leaves the entry behind; drop it here.
            leftover = self._pending.pop(call_id, None)
            if leftover is not None and leftover.timer is not None:
                leftover.timer.cancel()

    def stop(self) -> None:
        """Stop without blocking: graceful shutdown request, forced kill after grace period."""
        was_ready = self._ready
        self._ready = False
        self._stop_requested = True
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(PluginStoppedError(self.plugin_id))
        if self._channel.is_running() and not self._stopping:
            self._stopping = True
            try:
                self._channel.write_nowait(encode_request_line(shutdown_request()))
            except Exception as exc:
                logger.debug("[{}] shutdown request not delivered: {}", self.plugin_id, exc)
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self._force_kill()
            else:
                self._kill_handle = loop.call_later(self.shutdown_grace, self._force_kill)
        self._reject_all(lambda: PluginStoppedError(self.plugin_id))
        if was_ready:
            logger.info("[{}] plugin stopped", self.plugin_id)

    async def wait_closed(self, timeout: float | None = None) -> int | None:
        """Wait until the channel has fully terminated; returns its exit code."""
        if not self._spawned:
            return None
        return await asyncio.wait_for(self._channel.wait(), timeout=timeout)

    def _force_kill(self) -> None:
        self._kill_handle = None
        if self._channel.is_running():
            logger.debug("[{}] grace period elapsed, killing plugin process", self.plugin_id)
            self._channel.kill()

    def _handle_data(self, chunk: bytes) -> None:
        for line in self._framer.feed(chunk):
            try:
                message = decode_response_line(line, plugin_id=self.plugin_id)
            except MalformedFrameError as exc:
                logger.warning("[{}] Invalid JSON: {}", self.plugin_id, exc.details.get("line", ""))
                continue
            self._handle_message(message)

    def _handle_message(self, message: PluginResponse) -> None:
        handshake = self._handshake
        if handshake is not None and not handshake.done():
            if message.is_ready_signal:
                self._ready = True
                handshake.set_result(None)
            else:
                logger.debug("[{}] dropped frame before handshake: id={}", self.plugin_id, message.id)
            return
        if not self._ready:
            logger.debug("[{}] dropped frame while not ready: id={}", self.plugin_id, message.id)
            return
        call = self._pending.get(message.id)
        if call is None:
            self._notify(self.on_message, message.raw)
            return
        if message.success:
            self._settle(message.id, result=message.data)
        else:
            self._settle(message.id, error=to_response_error(self.plugin_id, call.action, message))

    def _handle_stderr(self, text: str) -> None:
        logger.debug("[{}] stderr: {}", self.plugin_id, text)

    def _handle_exit(self, code: int | None) -> None:
        self._ready = False
        if self._kill_handle is not None:
            self._kill_handle.cancel()
            self._kill_handle = None
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(ProcessExitedError(self.plugin_id, code))
        if not self._stopping:
            logger.warning("[{}] plugin process exited (code {})", self.plugin_id, code)
        else:
            logger.debug("[{}] plugin process exited (code {})", self.plugin_id, code)
        self._stopping = False
        self._notify(self.on_exit, code)
        self._reject_all(lambda: ProcessExitedError(self.plugin_id, code))

    def _expire(self, call_id: str) -> None:
        call = self._pending.get(call_id)
        if call is None:
            return
        self._settle(call_id, error=RequestTimeoutError(self.plugin_id, call.action, call.timeout))

    def _settle(self, call_id: str, *, result: Any = None, error: Exception | None = None) -> bool:
        call = self._pending.pop(call_id, None)
        if call is None:
            return False
        if call.timer is not None:
            call.timer.cancel()
        if call.future.done():
            return False
        if error is not None:
            call.future.set_exception(error)
        else:
            call.future.set_result(result)
        return True

    def _reject_all(self, make_error: Callable[[], Exception]) -> None:
        calls = list(self._pending.values())
        self._pending.clear()
        for call in calls:
            if call.timer is not None:
                call.timer.cancel()
            if not call.future.done():
                call.future.set_exception(make_error())

    def _notify(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("[{}] plugin callback failed", self.plugin_id)
