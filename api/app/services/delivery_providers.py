"""Channel delivery providers used by the job executor.

Invariants:
- Providers either return a ``DeliveryResult`` or raise ``DeliveryError``.
- Providers never change job status; the executor owns transitions.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from app.core.config import settings
from app.models.automation import AutomationJob, DeliveryChannel
from app.schema.notification import NotificationCreate
from app.services import notification_service
from app.utils.redaction import redact_secrets

logger = logging.getLogger("app.services.delivery")

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.]+)\s*\}\}")


class DeliveryError(RuntimeError):
    """Raised when a provider could not deliver a message."""


class RetryableDeliveryError(DeliveryError):
    """Upstream hiccup worth retrying within the same attempt."""


@dataclass(slots=True)
class DeliveryResult:
    """Delivery log plus hooks to run once the job transaction commits."""
    log: dict[str, Any]
    after_commit: list[Callable[[], Awaitable[None]]] = field(default_factory=list)


@dataclass(slots=True)
class RenderedMessage:
    subject: str
    body: str
    action_url: str | None = None


def _resolve(context: dict[str, Any], path: str) -> Any:
    current: Any = context
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def render_text(template: str | None, context: dict[str, Any]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown names render empty."""
    if not template:
        return ""

    def _replace(match: re.Match[str]) -> str:
        value = _resolve(context, match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_replace, template)


def render_message(job: AutomationJob) -> RenderedMessage:
    """Render the job's message template against its entity context."""
    template = job.message_template or {}
    context = {
        **(job.context or {}),
        "entity_type": job.entity_type.value if job.entity_type else None,
        "entity_id": str(job.entity_id),
        "automation_name": job.automation_name,
    }
    subject = render_text(template.get("subject") or template.get("title"), context) or job.automation_name
    body = render_text(template.get("body") or template.get("message"), context)
    if not body and job.template_id:
        body = f"[template:{job.template_id}]"
    action_url = render_text(template.get("action_url"), context) or None
    return RenderedMessage(subject=subject, body=body, action_url=action_url)


class DeliveryProvider(Protocol):
    channel: DeliveryChannel

    async def deliver(self, session: AsyncSession, job: AutomationJob) -> DeliveryResult:
        ...


class NotificationProvider:
    """Deliver by inserting an in-app notification for the recipient."""

    channel = DeliveryChannel.NOTIFICATION

    async def deliver(self, session: AsyncSession, job: AutomationJob) -> DeliveryResult:
        if job.recipient_user_id is None:
            raise DeliveryError("missing_recipient")
        message = render_message(job)
        notification = await notification_service.create_notification(
            session,
            NotificationCreate(
                user_id=job.recipient_user_id,
                type=job.trigger_event.value,
                title=message.subject,
                message=message.body or message.subject,
                payload={
                    "automation_id": str(job.automation_id),
                    "job_id": str(job.id),
                    "entity_type": job.entity_type.value,
                    "entity_id": str(job.entity_id),
                },
                action_url=message.action_url,
            ),
            commit=False,
        )
        return DeliveryResult(
            log={"provider": "notification", "notification_id": str(notification.id)},
            after_commit=[lambda: notification_service.publish_insert(notification)],
        )


class WebhookProvider:
    """POST the rendered message to the channel's delivery webhook."""

    def __init__(
        self,
        channel: DeliveryChannel,
        url: str,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.channel = channel
        self.url = url
        self.timeout = timeout or settings.delivery_timeout_seconds
        self.transport = transport
        self.wait = wait_exponential_jitter(initial=1, max=8)

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=self.wait,
            retry=retry_if_exception_type((httpx.TransportError, RetryableDeliveryError)),
            reraise=True,
        ):
            with attempt:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    response = await client.post(self.url, json=payload)
                if response.status_code >= 500:
                    raise RetryableDeliveryError(f"webhook_error:{response.status_code}")
                return response
        raise DeliveryError("unreachable")

    async def deliver(self, session: AsyncSession, job: AutomationJob) -> DeliveryResult:
        message = render_message(job)
        payload = {
            "channel": self.channel.value,
            "job_id": str(job.id),
            "automation_id": str(job.automation_id),
            "trigger_event": job.trigger_event.value,
            "recipient_user_id": str(job.recipient_user_id) if job.recipient_user_id else None,
            "supplier_id": str(job.supplier_id) if job.supplier_id else None,
            "entity": {"kind": job.entity_type.value, "id": str(job.entity_id)},
            "template_id": job.template_id,
            "subject": message.subject,
            "body": message.body,
        }
        try:
            response = await self._post(payload)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"webhook_unreachable:{redact_secrets(str(exc))}") from exc
        if response.status_code >= 400:
            raise DeliveryError(f"webhook_rejected:{response.status_code}:{response.text[:200]}")
        return DeliveryResult(
            log={
                "provider": "webhook",
                "status_code": response.status_code,
                "endpoint": redact_secrets(self.url),
            }
        )


class LogOnlyProvider:
    """Record the rendered message when no external transport is configured."""

    def __init__(self, channel: DeliveryChannel) -> None:
        self.channel = channel

    async def deliver(self, session: AsyncSession, job: AutomationJob) -> DeliveryResult:
        message = render_message(job)
        logger.info(
            "Delivery (%s) for job %s to %s: %s",
            self.channel.value,
            job.id,
            job.recipient_user_id,
            message.subject,
        )
        return DeliveryResult(
            log={"provider": "log", "subject": message.subject, "body_length": len(message.body)}
        )


def provider_for(channel: DeliveryChannel | str) -> DeliveryProvider:
    channel = DeliveryChannel(channel)
    if channel is DeliveryChannel.NOTIFICATION:
        return NotificationProvider()
    url = settings.delivery_webhook_urls.get(channel.value)
    if url:
        return WebhookProvider(channel, url)
    return LogOnlyProvider(channel)
