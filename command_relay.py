"""Command relay between the MCP tool server and polling Figma plugin hosts.

A plugin host cannot be called directly: it polls for queued commands and
reports each outcome later on a separate request. The relay turns that into
an awaitable call:

  tool --submit--> CommandRelay --enqueue--> HostQueue[file_key] --drain--> plugin
    ^                   |                                                    |
    +---resolve/reject--+<---------------- post_result(token, ...) <---------+

Each command carries a correlation token. The caller suspends on a future that
is settled by whichever happens first: the plugin posting a result for that
token, or the token's expiry timer.
"""

import asyncio
import enum
import sys
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class RelayError(Exception):
    """Base class for relay failures."""


class RelayTimeoutError(RelayError, TimeoutError):
    """No result arrived for a command before its deadline."""

    def __init__(self, host_id: str, token: str, timeout: float):
        self.host_id = host_id
        self.token = token
        self.timeout = timeout
        super().__init__(
            f"Operation timeout after {timeout:g}s - is the Figma plugin running for '{host_id}'?"
        )


class RemoteExecutionError(RelayError):
    """The host reported that it could not execute a command."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StaleResultError(RelayError):
    """A result or expiry referenced a token with no pending entry.

    Internal only: callers absorb it, the transport never sees it.
    """

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"No pending operation for token {token}")


# ---------------------------------------------------------------------------
# Commands and per-host queues
# ---------------------------------------------------------------------------

class Action(str, enum.Enum):
    CREATE_FRAME = "CREATE_FRAME"
    CREATE_RECTANGLE = "CREATE_RECTANGLE"
    CREATE_TEXT = "CREATE_TEXT"
    CREATE_BUTTON = "CREATE_BUTTON"
    CREATE_INPUT = "CREATE_INPUT"
    BUILD_SCREEN = "BUILD_SCREEN"
    APPLY_AUTO_LAYOUT = "APPLY_AUTO_LAYOUT"


def new_correlation_token() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Command:
    token: str
    action: Action
    payload: dict
    enqueued_at: float = field(default_factory=time.time)

    def to_wire(self) -> dict:
        """Serialize in the shape the plugin's executeCommand() expects."""
        return {
            "operationId": self.token,
            "action": self.action.value,
            "data": self.payload,
            "enqueuedAt": datetime.fromtimestamp(self.enqueued_at, timezone.utc).isoformat(),
        }


class HostQueue:
    """Append-only mailbox for one host; drain() is a destructive read."""

    def __init__(self, host_id: str):
        self.host_id = host_id
        self._commands: list[Command] = []
        self._lock = threading.Lock()

    def append(self, command: Command) -> None:
        with self._lock:
            self._commands.append(command)

    def drain(self) -> list[Command]:
        with self._lock:
            drained, self._commands = self._commands, []
        return drained

    def __len__(self) -> int:
        with self._lock:
            return len(self._commands)


class CommandQueues:
    """Per-host queues, created lazily on first enqueue.

    The map lock only guards lookup and creation; appends and drains take the
    host's own lock, so polling for one file never waits on another.
    """

    def __init__(self):
        self._queues: dict[str, HostQueue] = {}
        self._lock = threading.Lock()

    def _get(self, host_id: str, create: bool = False) -> HostQueue | None:
        with self._lock:
            queue = self._queues.get(host_id)
            if queue is None and create:
                queue = self._queues[host_id] = HostQueue(host_id)
            return queue

    def enqueue(self, host_id: str, command: Command) -> None:
        self._get(host_id, create=True).append(command)

    def drain(self, host_id: str) -> list[Command]:
        queue = self._get(host_id)
        if queue is None:
            return []
        return queue.drain()

    def depths(self) -> dict[str, int]:
        with self._lock:
            queues = list(self._queues.values())
        return {q.host_id: len(q) for q in queues}

    def clear(self) -> None:
        with self._lock:
            self._queues.clear()


# ---------------------------------------------------------------------------
# Continuations and the pending-operation table
# ---------------------------------------------------------------------------

class OperationState(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Continuation:
    """Resolve/reject pair around an asyncio future, settled at most once.

    The state check-and-set happens under a lock; delivery into the future is
    marshalled onto the future's loop so settle() may be called from any thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._lock = threading.Lock()
        self.state = OperationState.PENDING
        self.future: asyncio.Future = loop.create_future()

    def resolve(self, data: Any) -> bool:
        return self._settle(OperationState.RESOLVED, result=data)

    def reject(self, error: BaseException, state: OperationState = OperationState.REJECTED) -> bool:
        return self._settle(state, error=error)

    def cancel(self) -> bool:
        return self._settle(OperationState.CANCELLED)

    def _settle(self, state: OperationState, result: Any = None,
                error: BaseException | None = None) -> bool:
        with self._lock:
            if self.state is not OperationState.PENDING:
                return False
            self.state = state
        if self._loop.is_closed():
            return True
        self._loop.call_soon_threadsafe(self._deliver, state, result, error)
        return True

    def _deliver(self, state: OperationState, result: Any, error: BaseException | None) -> None:
        if self.future.done():
            return
        if state is OperationState.CANCELLED:
            self.future.cancel()
        elif error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(result)


@dataclass
class PendingOperation:
    token: str
    host_id: str
    action: Action
    continuation: Continuation
    deadline: float
    timeout: float
    timer: Any = None

    @property
    def future(self) -> asyncio.Future:
        return self.continuation.future

    def __await__(self):
        return self.continuation.future.__await__()


class PendingOperationTable:
    """Thread-safe token -> PendingOperation map owning each entry's expiry.

    Every terminal path (result, expiry, abandonment) removes the entry under
    the lock before settling the continuation, so a token is settled once no
    matter how many results or timers reach it.
    """

    def __init__(self, scheduler):
        self._scheduler = scheduler
        self._ops: dict[str, PendingOperation] = {}
        self._lock = threading.Lock()
        self._stats = {
            "dispatched": 0,
            "resolved": 0,
            "rejected": 0,
            "expired": 0,
            "cancelled": 0,
            "stale": 0,
        }

    def register(self, op: PendingOperation) -> None:
        with self._lock:
            if op.token in self._ops:
                raise ValueError(f"Duplicate correlation token: {op.token}")
            self._ops[op.token] = op
            self._stats["dispatched"] += 1
        op.timer = self._scheduler.call_later(op.timeout, self.expire, op.token)

    def _take(self, token: str) -> PendingOperation:
        with self._lock:
            op = self._ops.pop(token, None)
        if op is None:
            raise StaleResultError(token)
        if op.timer is not None:
            op.timer.cancel()
        return op

    def _count(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    def resolve_or_reject(self, token: str, success: bool, data: Any = None,
                          error: str | None = None) -> bool:
        """Settle the operation for *token*. Returns False for stale tokens."""
        try:
            op = self._take(token)
        except StaleResultError as e:
            self._count("stale")
            print(f"[relay] Dropped result: {e}", file=sys.stderr, flush=True)
            return False
        if success:
            op.continuation.resolve(data)
            self._count("resolved")
        else:
            op.continuation.reject(RemoteExecutionError(error or "Operation failed"))
            self._count("rejected")
        return True

    def expire(self, token: str) -> bool:
        try:
            op = self._take(token)
        except StaleResultError:
            # Already settled; the timer lost the race.
            return False
        op.continuation.reject(
            RelayTimeoutError(op.host_id, token, op.timeout),
            state=OperationState.EXPIRED,
        )
        self._count("expired")
        print(f"[relay] {token}: {op.action.value} for '{op.host_id}' timed out after {op.timeout:g}s",
              file=sys.stderr, flush=True)
        return True

    def abandon(self, token: str) -> bool:
        """Drop an operation whose caller stopped waiting."""
        try:
            op = self._take(token)
        except StaleResultError:
            return False
        op.continuation.cancel()
        self._count("cancelled")
        return True

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._ops

    def __len__(self) -> int:
        with self._lock:
            return len(self._ops)

    def snapshot(self) -> list[dict]:
        now = self._scheduler.now()
        with self._lock:
            ops = list(self._ops.values())
        return [
            {
                "token": op.token,
                "host_id": op.host_id,
                "action": op.action.value,
                "elapsed_seconds": round(now - (op.deadline - op.timeout), 1),
                "remaining_seconds": round(max(op.deadline - now, 0.0), 1),
            }
            for op in ops
        ]

    def get_stats(self) -> dict:
        with self._lock:
            return dict(self._stats)

    def clear(self) -> None:
        with self._lock:
            tokens = list(self._ops)
        for token in tokens:
            self.abandon(token)


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

class LoopScheduler:
    """Expiry timers on the running asyncio loop, measured on the monotonic clock."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable, *args):
        return asyncio.get_running_loop().call_later(delay, callback, *args)


# ---------------------------------------------------------------------------
# Relay façade
# ---------------------------------------------------------------------------

class CommandRelay:
    """Queues commands for plugin hosts and awaits their correlated results.

    All mutable state lives on the instance; the server owns one, tests make
    as many as they like.
    """

    def __init__(self, scheduler=None, token_factory: Callable[[], str] = new_correlation_token):
        self.scheduler = scheduler or LoopScheduler()
        self._new_token = token_factory
        self.queues = CommandQueues()
        self.pending = PendingOperationTable(self.scheduler)
        self._hosts: dict[str, dict] = {}
        self._hosts_lock = threading.Lock()

    # -- caller side --------------------------------------------------------

    def dispatch(self, host_id: str, action: Action | str, payload: dict | None,
                 timeout: float) -> PendingOperation:
        """Queue a command and return the handle its result will settle.

        Must be called from a running event loop. The pending entry is
        registered before the command is enqueued, so a host can never drain
        and answer a command whose token is not yet known.
        """
        action = Action(action)
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        loop = asyncio.get_running_loop()
        token = self._new_token()
        op = PendingOperation(
            token=token,
            host_id=host_id,
            action=action,
            continuation=Continuation(loop),
            deadline=self.scheduler.now() + timeout,
            timeout=timeout,
        )
        self.pending.register(op)
        self.queues.enqueue(host_id, Command(token, action, dict(payload or {})))
        print(f"[relay] {token}: queued {action.value} for '{host_id}' (timeout {timeout:g}s)",
              file=sys.stderr, flush=True)
        return op

    async def submit(self, host_id: str, action: Action | str, payload: dict | None,
                     timeout: float) -> Any:
        """Queue a command for *host_id* and wait for the host's result.

        Returns the data the host posted on success. Raises RelayTimeoutError
        when nothing arrives within *timeout* seconds and RemoteExecutionError
        when the host reports a failure.
        """
        op = self.dispatch(host_id, action, payload, timeout)
        try:
            return await op
        except asyncio.CancelledError:
            self.pending.abandon(op.token)
            raise

    # -- host side ----------------------------------------------------------

    def register_host(self, host_id: str, host_version: str | None = None) -> dict:
        with self._hosts_lock:
            info = self._hosts.setdefault(host_id, {"last_poll": None})
            info["version"] = host_version
            info["registered_at"] = time.time()
        print(f"[relay] Plugin registered for file: {host_id}, version: {host_version}",
              file=sys.stderr, flush=True)
        return {"accepted": True}

    def poll_commands(self, host_id: str) -> list[Command]:
        with self._hosts_lock:
            info = self._hosts.setdefault(host_id, {"version": None, "registered_at": None})
            info["last_poll"] = time.time()
        commands = self.queues.drain(host_id)
        if commands:
            print(f"[relay] Delivered {len(commands)} command(s) to '{host_id}'",
                  file=sys.stderr, flush=True)
        return commands

    def post_result(self, token: str, success: bool, data: Any = None,
                    error: str | None = None) -> dict:
        if self.pending.resolve_or_reject(token, success, data, error):
            outcome = "succeeded" if success else f"failed: {error or 'Operation failed'}"
            print(f"[relay] {token}: {outcome}", file=sys.stderr, flush=True)
        return {"acknowledged": True}

    # -- status -------------------------------------------------------------

    def snapshot(self) -> dict:
        with self._hosts_lock:
            hosts = {h: dict(info) for h, info in self._hosts.items()}
        return {
            "hosts": hosts,
            "queued_commands": self.queues.depths(),
            "pending_operations": self.pending.snapshot(),
            "stats": self.pending.get_stats(),
        }

    def close(self) -> None:
        self.pending.clear()
        self.queues.clear()
