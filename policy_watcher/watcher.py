"""Policy update watcher.

Keeps every node that caches authorization policy in sync: a node that
mutates policy calls ``publish()`` and every other connected watcher on the
same endpoint invokes its update callback, which usually reloads the policy.

The topic handle, subscription handle, callback and lifecycle state are one
unit guarded by a single reader/writer lock. Dispatch copies the callback
under the read lock and invokes it outside the lock, each message in its own
task, so a slow callback never stalls acknowledgement of later messages.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from enum import StrEnum
from types import TracebackType

import structlog

from policy_watcher.config import settings
from policy_watcher.exceptions import NotConnectedError, SendError, WatcherClosedError, WatcherConnectionError
from policy_watcher.rwlock import ReadWriteLock
from policy_watcher.transport.base import BaseTransport, SubscriptionHandle, TopicHandle
from policy_watcher.transport.factory import TransportFactory

LOG = structlog.get_logger()

# receipt alone is the signal: "policy changed, reload everything"
UPDATE_NOTIFICATION_BODY = b""

UpdateCallback = Callable[[str], None] | Callable[[str], Awaitable[None]]


def is_async_callable(callback: object) -> bool:
    """True for coroutine functions and for objects whose __call__ is one."""
    return inspect.iscoroutinefunction(callback) or inspect.iscoroutinefunction(getattr(callback, "__call__", None))


class WatcherState(StrEnum):
    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    CLOSED = "closed"


class Watcher:
    def __init__(self, endpoint: str, transport: BaseTransport | None = None) -> None:
        """
        :param endpoint: connection descriptor passed through to the transport, e.g. ``mem://topic-1``
            or ``redis://localhost:6379/0?channel=casbin-policy-updated``
        :param transport: transport to open the endpoint with. Resolved from the endpoint's
            scheme on connect when omitted.
        """
        self._endpoint = endpoint
        self._transport = transport
        self._lock = ReadWriteLock()
        self._callback: UpdateCallback | None = None
        self._topic: TopicHandle | None = None
        self._subscription: SubscriptionHandle | None = None
        self._state = WatcherState.UNINITIALIZED
        self._listener_task: asyncio.Task[None] | None = None
        self._dispatch_tasks: set[asyncio.Task[None]] = set()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """False once the subscription loop has stopped, even before the watcher is reconnected or closed."""
        return self._state == WatcherState.CONNECTED and self._listener_alive()

    def _listener_alive(self) -> bool:
        return self._listener_task is not None and not self._listener_task.done()

    def __repr__(self) -> str:
        return f"Watcher(endpoint={self._endpoint!r}, state={self._state.value})"

    async def __aenter__(self) -> "Watcher":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def set_callback(self, callback: UpdateCallback | None) -> None:
        """Replace the update callback. Dispatches already in flight keep the callback they captured."""
        async with self._lock.writer():
            self._callback = callback

    async def set_update_callback(self, callback: UpdateCallback | None) -> None:
        """
        Set the function called when the policy has been changed by another instance.
        A classic callback reloads the enforcer's policy.
        """
        await self.set_callback(callback)

    async def connect(self) -> None:
        """
        Open the topic and the subscription, then start the subscription loop.

        Connecting a connected watcher is a no-op, unless its subscription loop has stopped on a
        receive error, in which case the stale handles are released and both sides reopened.
        Raises WatcherConnectionError if either side fails to open; a side that did open is shut
        down before the error is raised.
        """
        async with self._lock.writer():
            if self._state == WatcherState.CLOSED:
                raise WatcherClosedError(self._endpoint)
            if self._state == WatcherState.CONNECTED:
                if self._listener_alive():
                    LOG.debug("Watcher already connected", endpoint=self._endpoint)
                    return
                LOG.info("Subscription loop has stopped, reconnecting", endpoint=self._endpoint)
                self._state = WatcherState.UNINITIALIZED
                await self._release_handles(self._shutdown_deadline())

            try:
                transport = self._transport or TransportFactory.get_transport(self._endpoint)
                topic = await transport.open_topic(self._endpoint)
            except Exception as e:
                raise WatcherConnectionError(self._endpoint, reason=str(e)) from e

            try:
                subscription = await transport.open_subscription(self._endpoint)
            except Exception as e:
                await self._shutdown_handle("topic", topic, self._shutdown_deadline())
                raise WatcherConnectionError(
                    self._endpoint, reason=f"failed to open updates subscription: {e}"
                ) from e
            except asyncio.CancelledError:
                await self._shutdown_handle("topic", topic, self._shutdown_deadline())
                raise

            self._topic = topic
            self._subscription = subscription
            self._state = WatcherState.CONNECTED
            self._listener_task = asyncio.create_task(self._listen(subscription))

        LOG.info("Watcher connected", endpoint=self._endpoint)

    async def publish(self) -> None:
        """
        Tell every other watcher on the endpoint that the policy changed.

        Raises NotConnectedError right away when the watcher was never connected or has been closed.
        """
        async with self._lock.reader():
            if self._topic is None:
                raise NotConnectedError(self._endpoint)
            try:
                await asyncio.wait_for(
                    self._topic.send(UPDATE_NOTIFICATION_BODY),
                    timeout=settings.PUBLISH_TIMEOUT_SECONDS,
                )
            except TimeoutError as e:
                raise SendError(
                    f"Timed out after {settings.PUBLISH_TIMEOUT_SECONDS}s sending update notification. "
                    f"endpoint={self._endpoint}"
                ) from e
        LOG.debug("Update notification published", endpoint=self._endpoint)

    async def update(self) -> None:
        """
        Call the update callback of other instances to synchronize their policy.
        It is usually called after changing the policy, e.g. after saving, adding or removing policy rules.
        """
        await self.publish()

    async def close(self) -> None:
        """
        Stop and release the watcher; the callback will not be called any more.

        Idempotent. Every release step runs even when an earlier one fails; failures are logged.
        The whole close, including the wait for dispatches that started before it, shares one
        shutdown timeout. A close cancelled part way still leaves the watcher closed.
        """
        async with self._lock.writer():
            if self._state == WatcherState.CLOSED:
                return

            deadline = self._shutdown_deadline()
            # flipped before the first suspension point
            self._callback = None
            self._state = WatcherState.CLOSED
            await self._release_handles(deadline)

        # a callback may close its own watcher, so never wait on the current task
        in_flight = {task for task in self._dispatch_tasks if task is not asyncio.current_task()}
        if in_flight:
            _, pending = await asyncio.wait(in_flight, timeout=self._remaining(deadline))
            if pending:
                LOG.warning(
                    "Update callbacks still running after close",
                    endpoint=self._endpoint,
                    running=len(pending),
                )
        LOG.info("Watcher closed", endpoint=self._endpoint)

    @staticmethod
    def _shutdown_deadline() -> float:
        return asyncio.get_running_loop().time() + settings.SHUTDOWN_TIMEOUT_SECONDS

    @staticmethod
    def _remaining(deadline: float) -> float:
        return max(0.0, deadline - asyncio.get_running_loop().time())

    async def _release_handles(self, deadline: float) -> None:
        """
        Stop the subscription loop and shut down both handles before *deadline*. Caller holds the write lock.

        The handles are detached together before anything is awaited; if the release is cancelled,
        the steps it has not reached yet are abandoned.
        """
        listener_task, self._listener_task = self._listener_task, None
        topic, self._topic = self._topic, None
        subscription, self._subscription = self._subscription, None

        if listener_task is not None and not listener_task.done():
            listener_task.cancel()
            _, pending = await asyncio.wait({listener_task}, timeout=self._remaining(deadline))
            if pending:
                LOG.warning("Subscription loop did not stop in time", endpoint=self._endpoint)

        if topic is not None:
            await self._shutdown_handle("topic", topic, deadline)
        if subscription is not None:
            await self._shutdown_handle("subscription", subscription, deadline)

    async def _shutdown_handle(self, name: str, handle: TopicHandle | SubscriptionHandle, deadline: float) -> None:
        # started as a task so the shutdown is attempted even when the deadline has already passed
        task = asyncio.ensure_future(handle.shutdown())
        try:
            done, _ = await asyncio.wait({task}, timeout=self._remaining(deadline))
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            task.cancel()
            LOG.error(
                "Handle shutdown timed out",
                handle=name,
                endpoint=self._endpoint,
                timeout=settings.SHUTDOWN_TIMEOUT_SECONDS,
            )
            return
        try:
            task.result()
        except Exception:
            LOG.exception("Handle shutdown failed", handle=name, endpoint=self._endpoint)

    async def _listen(self, subscription: SubscriptionHandle) -> None:
        LOG.debug("Subscription loop started", endpoint=self._endpoint)
        try:
            while True:
                message = await subscription.receive()
                message.ack()
                self._start_dispatch(message.body)
        except asyncio.CancelledError:
            LOG.debug("Subscription loop cancelled", endpoint=self._endpoint)
            raise
        except Exception:
            # no reconnect: a new connect is needed to resume delivery
            LOG.exception("Error while receiving an update message, subscription loop stopped", endpoint=self._endpoint)

    def _start_dispatch(self, body: bytes) -> None:
        task = asyncio.create_task(self._dispatch(bytes(body)))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _dispatch(self, body: bytes) -> None:
        async with self._lock.reader():
            callback = self._callback
        # nothing may suspend between the copy above and the invocation below,
        # otherwise a close could clear the slot and return before the call starts
        if callback is None:
            LOG.debug("No update callback registered, dropping notification", endpoint=self._endpoint)
            return

        payload = body.decode("utf-8", errors="replace")
        try:
            if is_async_callable(callback):
                await callback(payload)
            else:
                result = await asyncio.to_thread(callback, payload)
                # e.g. ``lambda payload: enforcer.load_policy()`` with an async load_policy
                if inspect.isawaitable(result):
                    await result
        except Exception:
            LOG.exception("Update callback failed", endpoint=self._endpoint)


async def create_watcher(endpoint: str, transport: BaseTransport | None = None) -> Watcher:
    """Construct a watcher and connect it in one step."""
    watcher = Watcher(endpoint, transport=transport)
    await watcher.connect()
    return watcher
