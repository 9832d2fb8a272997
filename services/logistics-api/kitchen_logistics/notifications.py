"""Best-effort branch notifications.

Services publish a :class:`Notification` only after their transaction has
committed. A single worker task drains the queue, resolves the branch's
active admins and hands one rendered email per recipient to the configured
sink. Delivery failures are logged and dropped: they never affect the
operation that produced the notification and are not retried.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Protocol

import httpx
from jinja2 import Template
from markupsafe import Markup
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import models

logger = logging.getLogger(__name__)

NOTIFY_RELAY_URL = os.getenv("NOTIFY_RELAY_URL", "")
NOTIFY_TIMEOUT = float(os.getenv("NOTIFY_TIMEOUT", "10"))
NOTIFY_SUBJECT_PREFIX = os.getenv("NOTIFY_SUBJECT_PREFIX", "[Dapur MBG]")

EMAIL_TEMPLATE = Template(
    """<div style="font-family: Arial, sans-serif; padding: 20px; border: 1px solid #eee; max-width: 600px;">
  <h3>Hello {{ name }},</h3>
  <p>{{ message }}</p>
  <br/>
  <hr style="border: none; border-top: 1px solid #eee; margin: 20px 0;"/>
  <p style="font-size: 12px; color: #888;">Log in to the application to see the full details.</p>
</div>""",
    autoescape=True,
)


@dataclass(frozen=True)
class Notification:
    branch_id: uuid.UUID
    subject: str
    message: Markup


class Notifier(Protocol):
    def publish(self, notification: Notification) -> None: ...


class NotificationSink(Protocol):
    async def send(self, to: str, subject: str, html: str) -> bool: ...


def render_email(name: str, message: Markup) -> str:
    return EMAIL_TEMPLATE.render(name=name, message=message)


def request_approved(branch_id: uuid.UUID, code: str) -> Notification:
    return Notification(
        branch_id,
        "Request approved",
        Markup("Your request <b>{}</b> has been <b>APPROVED</b> by the center. Please wait for shipment.").format(code),
    )


def request_shipped(branch_id: uuid.UUID, code: str) -> Notification:
    return Notification(
        branch_id,
        "Request shipped",
        Markup(
            "Your request <b>{}</b> is now <b>SHIPPED</b>. Confirm receipt in the application "
            "once the goods arrive."
        ).format(code),
    )


def request_rejected(branch_id: uuid.UUID, code: str, reason: str) -> Notification:
    return Notification(
        branch_id,
        "Request rejected",
        Markup("Your request <b>{}</b> has been <b>REJECTED</b> by the center.<br/><br/><b>Reason:</b> {}").format(
            code, reason
        ),
    )


class LoggingSink:
    """Sink used when no relay is configured; records what would be sent."""

    async def send(self, to: str, subject: str, html: str) -> bool:
        logger.info("Notification to %s: %s", to, subject)
        return True


class HttpRelaySink:
    """POSTs each email to an HTTP mail relay."""

    def __init__(self, url: str, *, timeout: float = NOTIFY_TIMEOUT, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, to: str, subject: str, html: str) -> bool:
        try:
            response = await self._client.post(self.url, json={"to": to, "subject": subject, "html": html})
        except httpx.HTTPError as exc:
            logger.warning("Mail relay unreachable for %s: %s", to, exc)
            return False
        if response.is_error:
            logger.warning("Mail relay rejected %s with HTTP %s", to, response.status_code)
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


def build_sink() -> NotificationSink:
    if NOTIFY_RELAY_URL:
        return HttpRelaySink(NOTIFY_RELAY_URL)
    return LoggingSink()


async def branch_admins(session: AsyncSession, branch_id: uuid.UUID) -> list[models.User]:
    result = await session.execute(
        select(models.User).where(
            models.User.branch_id == branch_id,
            models.User.role == models.Role.BRANCH_ADMIN.value,
            models.User.is_active.is_(True),
        )
    )
    return list(result.scalars().all())


class NotificationDispatcher:
    """In-process queue plus worker decoupling delivery from the request path."""

    def __init__(self, sink: NotificationSink, session_factory: async_sessionmaker) -> None:
        self.sink = sink
        self.session_factory = session_factory
        self.queue: asyncio.Queue[Notification] = asyncio.Queue()
        self._worker: asyncio.Task | None = None

    def publish(self, notification: Notification) -> None:
        self.queue.put_nowait(notification)

    async def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name="notification-worker")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        if isinstance(self.sink, HttpRelaySink):
            await self.sink.aclose()

    async def _run(self) -> None:
        while True:
            notification = await self.queue.get()
            try:
                await self.deliver(notification)
            except Exception:
                logger.exception("Failed to deliver notification %r", notification.subject)
            finally:
                self.queue.task_done()

    async def deliver(self, notification: Notification) -> int:
        """Send ``notification`` to every active admin of its branch; return the number sent."""

        async with self.session_factory() as session:
            admins = await branch_admins(session, notification.branch_id)
        subject = f"{NOTIFY_SUBJECT_PREFIX} {notification.subject}".strip()
        sent = 0
        for admin in admins:
            if not admin.email:
                continue
            if await self.sink.send(admin.email, subject, render_email(admin.name, notification.message)):
                sent += 1
            else:
                logger.warning("Notification %r to %s was not delivered", notification.subject, admin.email)
        return sent
