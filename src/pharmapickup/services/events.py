"""Lifecycle events published after every committed status change.

The lifecycle service hands each committed change to a
LifecycleEventDispatcher, which fans it out to subscribers. A subscriber is
any async callable taking a LifecycleEvent. Subscribers run after the commit,
so a failing subscriber is logged and never undoes the change.

Built-in subscribers:
- log_lifecycle_event: writes an audit line to the ``pharmapickup.audit`` logger
- WebhookEventSubscriber: queues the event and POSTs it as JSON from a
  background task, optionally HMAC-signed
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime
    from uuid import UUID

    from pharmapickup.core.config import Settings
    from pharmapickup.db.models.base import ActorRole, PickupStatus

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("pharmapickup.audit")


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """One committed status change of a pickup request.

    Attributes:
        request_id: Request that changed.
        previous_status: Status before the change, None for creation.
        new_status: Status after the change.
        actor_role: Role that drove the change.
        actor_id: Identifier of the actor, None for system actions.
        occurred_at: Commit-time timestamp of the change.
    """

    request_id: UUID
    previous_status: PickupStatus | None
    new_status: PickupStatus
    actor_role: ActorRole
    actor_id: int | None
    occurred_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation."""
        return {
            "request_id": str(self.request_id),
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value,
            "actor_role": self.actor_role.value,
            "actor_id": self.actor_id,
            "occurred_at": self.occurred_at.isoformat(),
        }


class LifecycleEventDispatcher:
    """Fans lifecycle events out to registered subscribers, in order."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[LifecycleEvent], Awaitable[None]]] = []

    @property
    def subscribers(self) -> tuple[Callable[[LifecycleEvent], Awaitable[None]], ...]:
        return tuple(self._subscribers)

    def subscribe(self, subscriber: Callable[[LifecycleEvent], Awaitable[None]]) -> None:
        """Register a subscriber.

        Args:
            subscriber: Async callable receiving each LifecycleEvent.
        """
        self._subscribers.append(subscriber)

    async def publish(self, event: LifecycleEvent) -> None:
        """Deliver an event to every subscriber.

        Errors raised by a subscriber are logged and do not stop delivery to
        the remaining subscribers.
        """
        for subscriber in self._subscribers:
            try:
                await subscriber(event)
            except Exception:
                logger.exception(
                    "Lifecycle event subscriber failed",
                    extra={
                        "request_id": str(event.request_id),
                        "new_status": event.new_status.value,
                        "subscriber": getattr(subscriber, "__name__", type(subscriber).__name__),
                    },
                )


async def log_lifecycle_event(event: LifecycleEvent) -> None:
    """Audit subscriber: one INFO line per committed change."""
    audit_logger.info(
        "pickup %s: %s -> %s by %s",
        event.request_id,
        event.previous_status.value if event.previous_status else "-",
        event.new_status.value,
        event.actor_role.value,
        extra=event.to_dict(),
    )


class WebhookEventSubscriber:
    """Deliver lifecycle events to an HTTP endpoint.

    Calling the subscriber only enqueues the event; a background task owned
    by the subscriber drains the queue and POSTs each event in order, so the
    lifecycle operation that published it never waits on the network. When
    the queue is full the event is dropped and logged.

    The body is the event's JSON representation. When a secret is
    configured, the body is signed with HMAC-SHA256 and the signature is sent
    in the ``X-Signature-SHA256`` header as ``sha256=<hex>``.

    Delivery failures (transport errors and non-2xx responses) are logged.
    There is no retry; the receiving side reconciles by polling.
    """

    def __init__(
        self,
        url: str,
        *,
        secret: str | None = None,
        timeout: float = 10.0,
        max_pending: int = 1000,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._secret = secret
        self._timeout = timeout
        self._max_pending = max_pending
        self._client = client
        self._owns_client = client is None
        self._queue: asyncio.Queue[LifecycleEvent | None] | None = None
        self._drain_task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        """Events queued and not yet handed to the HTTP client."""
        return self._queue.qsize() if self._queue is not None else 0

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    @staticmethod
    def compute_signature(payload: str, secret: str) -> str:
        """Compute the HMAC-SHA256 signature header value for a payload."""
        signature = hmac.new(
            secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"sha256={signature}"

    async def __call__(self, event: LifecycleEvent) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._max_pending)
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain(), name="lifecycle-webhook")

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.error(
                "Lifecycle webhook queue full, event dropped: request_id=%s, status=%s",
                event.request_id,
                event.new_status.value,
            )

    async def _drain(self) -> None:
        queue = self._queue
        while True:
            event = await queue.get()
            try:
                if event is None:
                    return
                await self.deliver(event)
            except Exception:
                logger.exception(
                    "Lifecycle webhook delivery crashed: request_id=%s", event.request_id
                )
            finally:
                queue.task_done()

    async def deliver(self, event: LifecycleEvent) -> None:
        """POST one event and log the outcome."""
        payload = json.dumps(event.to_dict(), sort_keys=True)
        headers = {
            "Content-Type": "application/json",
            "X-Pickup-Request-ID": str(event.request_id),
            "X-Pickup-Status": event.new_status.value,
        }
        if self._secret:
            headers["X-Signature-SHA256"] = self.compute_signature(payload, self._secret)

        try:
            client = await self._get_http_client()
            response = await client.post(self._url, content=payload, headers=headers)
        except httpx.RequestError as e:
            logger.error(
                "Lifecycle webhook failed: request_id=%s, error=%s",
                event.request_id,
                e,
            )
            return

        if 200 <= response.status_code < 300:
            logger.debug(
                "Lifecycle webhook delivered: request_id=%s, status=%d",
                event.request_id,
                response.status_code,
            )
        else:
            logger.error(
                "Lifecycle webhook rejected: request_id=%s, status=%d",
                event.request_id,
                response.status_code,
            )

    async def join(self) -> None:
        """Wait until every queued event has been delivered or given up on."""
        if self._queue is not None and self._drain_task is not None:
            await self._queue.join()

    async def aclose(self) -> None:
        """Deliver what is queued, stop the drain task and close an owned client."""
        if self._drain_task is not None:
            if not self._drain_task.done():
                await self._queue.put(None)
                await self._drain_task
            self._drain_task = None
            self._queue = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def build_dispatcher(settings: Settings) -> LifecycleEventDispatcher:
    """Create the dispatcher for a process from settings.

    The audit subscriber is always registered; the webhook subscriber only
    when ``events.webhook_url`` is set.
    """
    dispatcher = LifecycleEventDispatcher()
    dispatcher.subscribe(log_lifecycle_event)

    if settings.events.webhook_url:
        secret = settings.events.webhook_secret
        dispatcher.subscribe(
            WebhookEventSubscriber(
                settings.events.webhook_url,
                secret=secret.get_secret_value() if secret is not None else None,
                timeout=settings.events.webhook_timeout,
                max_pending=settings.events.webhook_queue_size,
            )
        )

    return dispatcher


async def close_dispatcher(dispatcher: LifecycleEventDispatcher) -> None:
    """Flush queued webhook deliveries and release their HTTP clients."""
    for subscriber in dispatcher.subscribers:
        if isinstance(subscriber, WebhookEventSubscriber):
            await subscriber.aclose()
