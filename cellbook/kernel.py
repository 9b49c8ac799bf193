"""
KernelSession: adapts an external kernel provider to a uniform async
execution contract.

A provider delivers every message of an execution through a single
callback. The session splits that stream into status transitions, the
execution counter and output events, and ignores everything else.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from cellbook.config import DEFAULT_EXECUTION_TIMEOUT_MS
from cellbook.errors import ExecutionTimeout, KernelCapabilityError, KernelDeadError
from cellbook.events import Disposable, Emitter

logger = logging.getLogger(__name__)


REQUIRED_CAPABILITIES = (
    "execute",
    "interrupt",
    "restart",
    "shutdown",
    "destroy",
    "on_did_change_execution_state",
)

TERMINAL_STATUSES = ("ok", "error")

OutputCallback = Callable[[dict[str, Any]], None]
StatusCallback = Callable[[str], None]


@runtime_checkable
class KernelProvider(Protocol):
    """What a kernel backend must offer to be wrapped in a KernelSession."""

    def execute(self, code: str, on_message: Callable[[dict[str, Any]], None]) -> None: ...

    def interrupt(self) -> None: ...

    def restart(self, on_done: Callable[[], None]) -> None: ...

    def shutdown(self) -> None: ...

    def destroy(self) -> None: ...

    def on_did_change_execution_state(self, callback: Callable[[str], None]) -> Disposable: ...


def require_capabilities(provider: Any):
    """Fail fast when ``provider`` lacks any method a session relies on."""
    missing = [name for name in REQUIRED_CAPABILITIES if not callable(getattr(provider, name, None))]
    if missing:
        raise KernelCapabilityError(provider, missing)


class KernelSpec(BaseModel):
    """An installed kernel that can be started."""
    name: str
    display_name: str = ""
    language: Optional[str] = None
    resource_dir: Optional[str] = None
    spec: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "KernelSpec":
        """Build from a discovery record (``display_name`` or ``displayName``)."""
        return cls(
            name=raw["name"],
            display_name=raw.get("display_name") or raw.get("displayName") or raw["name"],
            language=raw.get("language"),
            resource_dir=raw.get("resource_dir"),
            spec=dict(raw),
        )


class KernelSessionStatus(str, Enum):
    """Life-cycle state of a kernel session."""
    IDLE = "idle"
    BUSY = "busy"
    RESTARTING = "restarting"
    DEAD = "dead"


@dataclass
class ExecutionResult:
    """Result of executing code on a kernel session."""
    status: str
    outputs: list[dict[str, Any]] = field(default_factory=list)
    execution_count: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status,
            "outputs": self.outputs,
            "execution_count": self.execution_count,
        }


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _settle_threadsafe(loop: asyncio.AbstractEventLoop, callback: Callable[[], None]):
    if loop.is_closed():
        return
    if _running_loop() is loop:
        callback()
        return
    try:
        loop.call_soon_threadsafe(callback)
    except RuntimeError:
        # Loop closed after the check; nothing is waiting any more
        logger.debug("Dropped kernel message for closed event loop")


class _ExecutionSink:
    """
    Receives the message stream of one execute call.

    The terminal status settles ``future`` exactly once. Output events keep
    flowing to ``on_output`` afterwards (orphan output); once the call has
    timed out the sink is expired and further messages are inert.
    """

    def __init__(
        self,
        session: "KernelSession",
        loop: asyncio.AbstractEventLoop,
        on_output: Optional[OutputCallback],
        on_status: Optional[StatusCallback],
    ):
        self.session = session
        self.loop = loop
        self.on_output = on_output
        self.on_status = on_status
        self.future: asyncio.Future = loop.create_future()
        self.outputs: list[dict[str, Any]] = []
        self.execution_count: Optional[int] = None
        self.expired = False

    def __call__(self, message: dict[str, Any]):
        # Providers may call back from their own threads
        _settle_threadsafe(self.loop, lambda: self._handle(message))

    def expire(self):
        self.expired = True

    def _handle(self, message: dict[str, Any]):
        if self.expired:
            return
        try:
            routed = self.session._classify_message(message)
        except Exception:
            logger.exception("Error processing execution result")
            return
        if routed is None:
            return

        channel, payload = routed
        if channel == "status":
            self._handle_status(payload)
        elif channel == "execution_count":
            self.execution_count = payload
        else:
            if not self.future.done():
                self.outputs.append(payload)
            if self.on_output is not None:
                try:
                    self.on_output(payload)
                except Exception:
                    logger.exception("Output callback failed")

    def _handle_status(self, status: str):
        if self.future.done():
            return
        if self.on_status is not None:
            try:
                self.on_status(status)
            except Exception:
                logger.exception("Status callback failed")
        if status in TERMINAL_STATUSES and not self.future.done():
            self.future.set_result(
                ExecutionResult(status=status, outputs=self.outputs, execution_count=self.execution_count)
            )
            # The result owns the collected outputs; orphans only reach on_output
            self.outputs = []

    def fail(self, error: BaseException):
        if not self.future.done():
            self.future.set_exception(error)


class KernelSession:
    """
    A live kernel attached to a provider.

    Status moves between idle and busy while executing, through
    ``restarting`` back to idle on restart, and ends at ``dead`` after
    shutdown, after which ``execute`` fails fast.
    """

    def __init__(self, provider: KernelProvider, spec: KernelSpec):
        require_capabilities(provider)
        self.provider: Optional[KernelProvider] = provider
        self.spec = spec
        self.name = spec.name
        self.display_name = spec.display_name or spec.name
        self.language = spec.language
        self.status: str = KernelSessionStatus.IDLE.value
        self.execution_count = 0
        self.emitter = Emitter()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # Retained so late messages always have a live receiver
        self._sinks: list[_ExecutionSink] = []
        self._state_subscription: Optional[Disposable] = provider.on_did_change_execution_state(
            self._on_execution_state
        )

    def _on_execution_state(self, state: str):
        # Providers may report state from their own threads
        loop = self._loop
        if loop is None or _running_loop() is not None:
            self._apply_execution_state(state)
        else:
            _settle_threadsafe(loop, lambda: self._apply_execution_state(state))

    def _apply_execution_state(self, state: str):
        if self.provider is not None:
            self.set_status(state)

    def _classify_message(self, message: Any) -> Optional[tuple[str, Any]]:
        """Route a raw provider message to status, execution_count or output."""
        if not isinstance(message, dict):
            return None

        stream = message.get("stream")
        if stream == "status":
            return ("status", message.get("data"))
        if stream == "execution_count":
            self.execution_count = message.get("data")
            return ("execution_count", message.get("data"))

        if message.get("output_type"):
            return ("output", message)

        content = message.get("content")
        if isinstance(content, dict) and content.get("execution_state"):
            self.set_status(content["execution_state"])
        return None

    async def execute(
        self,
        code: str,
        on_output: Optional[OutputCallback] = None,
        on_status: Optional[StatusCallback] = None,
        timeout_ms: int = DEFAULT_EXECUTION_TIMEOUT_MS,
    ) -> ExecutionResult:
        """
        Execute code and wait for a terminal status.

        Args:
            code: Source to run
            on_output: Called for every output event, including ones that
                arrive after the terminal status
            on_status: Called for status transitions until the result settles
            timeout_ms: Give up after this many milliseconds (0 = no limit)

        Returns:
            ExecutionResult with the terminal status and collected outputs

        Raises:
            KernelDeadError: The session has been shut down
            ExecutionTimeout: No terminal status arrived in time
        """
        if self.provider is None or self.status == KernelSessionStatus.DEAD:
            raise KernelDeadError(f"Kernel {self.name} has been shut down")

        loop = self._loop = asyncio.get_running_loop()
        sink = _ExecutionSink(self, loop, on_output, on_status)
        self._sinks.append(sink)

        try:
            self.provider.execute(code, sink)
        except Exception:
            sink.expire()
            self._sinks.remove(sink)
            raise

        if timeout_ms and timeout_ms > 0:
            try:
                return await asyncio.wait_for(sink.future, timeout_ms / 1000)
            except asyncio.TimeoutError:
                sink.expire()
                if sink in self._sinks:
                    self._sinks.remove(sink)
                logger.warning("Execution on kernel %s timed out after %dms", self.name, timeout_ms)
                raise ExecutionTimeout(timeout_ms) from None
        return await sink.future

    def interrupt(self):
        """Ask the kernel to interrupt; the pending execute still waits for a terminal status."""
        if self.provider is not None:
            self.provider.interrupt()

    async def restart(self):
        if self.provider is None:
            raise KernelDeadError(f"Kernel {self.name} has been shut down")

        loop = self._loop = asyncio.get_running_loop()
        done: asyncio.Future = loop.create_future()

        def finish():
            if not done.done():
                done.set_result(None)

        def on_done(*_args):
            _settle_threadsafe(loop, finish)

        self.set_status(KernelSessionStatus.RESTARTING.value)
        self.provider.restart(on_done)
        await done
        self.execution_count = 0
        self.set_status(KernelSessionStatus.IDLE.value)
        logger.info("Kernel %s restarted", self.name)
        self.emitter.emit("did-restart")

    def shutdown(self):
        if self.provider is None:
            return
        provider, self.provider = self.provider, None
        try:
            if self._state_subscription is not None:
                self._state_subscription.dispose()
                self._state_subscription = None
            provider.shutdown()
            provider.destroy()
        except Exception:
            logger.exception("Error shutting down kernel %s", self.name)
        for sink in self._sinks:
            sink.expire()
            sink.fail(KernelDeadError(f"Kernel {self.name} has been shut down"))
        self._sinks.clear()
        self.set_status(KernelSessionStatus.DEAD.value)
        self.emitter.emit("did-terminate")

    def is_alive(self) -> bool:
        return self.provider is not None and self.status != KernelSessionStatus.DEAD

    def set_status(self, status: str):
        status = status.value if isinstance(status, KernelSessionStatus) else str(status)
        old_status, self.status = self.status, status
        if old_status != status:
            self.emitter.emit("did-change-status", status)

    def on_did_change_status(self, callback: Callable[[str], None]) -> Disposable:
        return self.emitter.on("did-change-status", callback)

    def on_did_terminate(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-terminate", callback)

    def on_did_restart(self, callback: Callable[[], None]) -> Disposable:
        return self.emitter.on("did-restart", callback)

    def destroy(self):
        self.shutdown()
        self.emitter.dispose()
