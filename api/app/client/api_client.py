"""Async HTTP client for the communications API.

Invariants:
- Payloads are validated locally first; a malformed request never hits the network.
- Every request is bounded by ``request_timeout_seconds``.
- Failures surface as ``app.core.errors`` types, never raw httpx exceptions.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.client.config import ClientSettings, get_client_settings
from app.core.errors import RequestTimeoutError, TransientNetworkError, ValidationError, error_for_response
from app.schema.automation import (
    AutomationAnalytics,
    AutomationJobRead,
    AutomationJobStats,
    AutomationRuleCreate,
    AutomationRuleRead,
    AutomationRuleUpdate,
    AutomationToggle,
    ExecutorRunSummary,
    ManualTriggerPayload,
    TriggerEventPayload,
)
from app.schema.constraints import (
    OptOutCreate,
    OptOutRead,
    QuietHoursRead,
    QuietHoursUpsert,
    RateLimitRead,
    RateLimitUpsert,
)
from app.schema.notification import (
    MarkAllReadResult,
    NotificationPreferencesRead,
    NotificationPreferencesUpdate,
    NotificationRead,
    UnreadCount,
)

logger = logging.getLogger("app.client")

ModelT = TypeVar("ModelT", bound=BaseModel)


def _validated(model: type[ModelT], payload: ModelT | Mapping[str, Any]) -> ModelT:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {model.__name__} payload", detail=exc.errors(include_url=False)) from exc


def _params(**values: Any) -> dict[str, Any]:
    return {key: str(value) if isinstance(value, uuid.UUID) else value for key, value in values.items() if value is not None}


class CommsClient:
    """Typed wrapper over the REST surface, one ``httpx.AsyncClient`` per instance."""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_client_settings()
        self.base_url = (base_url or self.settings.api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else self.settings.request_timeout_seconds
        headers = {"Accept": "application/json"}
        api_key = token if token is not None else self.settings.api_key
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=transport,
        )

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "CommsClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the decoded body, or None for empty responses."""
        try:
            response = await self._http.request(method, path, json=json, params=params)
        except httpx.TimeoutException as exc:
            logger.info("%s %s timed out after %ss", method, path, self.timeout)
            raise RequestTimeoutError(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            logger.info("%s %s failed: %s", method, path, exc)
            raise TransientNetworkError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            raise error_for_response(response.status_code, payload)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Rules

    async def list_rules(self, *, supplier_id: uuid.UUID | None = None) -> list[AutomationRuleRead]:
        rows = await self.request("GET", "/automations", params=_params(supplier_id=supplier_id))
        return [AutomationRuleRead.model_validate(row) for row in rows]

    async def list_templates(self) -> list[AutomationRuleRead]:
        rows = await self.request("GET", "/automations/templates")
        return [AutomationRuleRead.model_validate(row) for row in rows]

    async def get_rule(self, rule_id: uuid.UUID) -> AutomationRuleRead:
        return AutomationRuleRead.model_validate(await self.request("GET", f"/automations/{rule_id}"))

    async def create_rule(self, rule: AutomationRuleCreate | Mapping[str, Any]) -> AutomationRuleRead:
        payload = _validated(AutomationRuleCreate, rule)
        body = await self.request("POST", "/automations", json=payload.model_dump(mode="json"))
        return AutomationRuleRead.model_validate(body)

    async def update_rule(
        self, rule_id: uuid.UUID, patch: AutomationRuleUpdate | Mapping[str, Any]
    ) -> AutomationRuleRead:
        payload = _validated(AutomationRuleUpdate, patch)
        body = await self.request(
            "PATCH", f"/automations/{rule_id}", json=payload.model_dump(mode="json", exclude_unset=True)
        )
        return AutomationRuleRead.model_validate(body)

    async def toggle_rule(self, rule_id: uuid.UUID, is_active: bool) -> AutomationRuleRead:
        payload = AutomationToggle(is_active=is_active)
        body = await self.request("POST", f"/automations/{rule_id}/toggle", json=payload.model_dump())
        return AutomationRuleRead.model_validate(body)

    async def delete_rule(self, rule_id: uuid.UUID) -> None:
        await self.request("DELETE", f"/automations/{rule_id}")

    async def trigger_rule(
        self, rule_id: uuid.UUID, payload: ManualTriggerPayload | Mapping[str, Any]
    ) -> AutomationJobRead:
        trigger = _validated(ManualTriggerPayload, payload)
        body = await self.request("POST", f"/automations/{rule_id}/trigger", json=trigger.model_dump(mode="json"))
        return AutomationJobRead.model_validate(body)

    async def emit_event(self, payload: TriggerEventPayload | Mapping[str, Any]) -> list[AutomationJobRead]:
        """Report a marketplace event and return the jobs it scheduled."""
        event = _validated(TriggerEventPayload, payload)
        rows = await self.request("POST", "/automations/events", json=event.model_dump(mode="json"))
        return [AutomationJobRead.model_validate(row) for row in rows]

    # Jobs

    async def list_jobs(
        self,
        *,
        automation_id: uuid.UUID | None = None,
        supplier_id: uuid.UUID | None = None,
        status: str | None = None,
    ) -> list[AutomationJobRead]:
        rows = await self.request(
            "GET",
            "/automations/jobs",
            params=_params(automation_id=automation_id, supplier_id=supplier_id, status=status),
        )
        return [AutomationJobRead.model_validate(row) for row in rows]

    async def job_stats(self, *, supplier_id: uuid.UUID | None = None) -> AutomationJobStats:
        body = await self.request("GET", "/automations/jobs/stats", params=_params(supplier_id=supplier_id))
        return AutomationJobStats.model_validate(body)

    async def analytics(self, *, days: int = 30, supplier_id: uuid.UUID | None = None) -> AutomationAnalytics:
        if days < 1:
            raise ValidationError("days must be at least 1")
        body = await self.request("GET", "/automations/analytics", params=_params(days=days, supplier_id=supplier_id))
        return AutomationAnalytics.model_validate(body)

    async def cancel_job(self, job_id: uuid.UUID) -> AutomationJobRead:
        return AutomationJobRead.model_validate(await self.request("POST", f"/automations/jobs/{job_id}/cancel"))

    async def run_due_jobs(self) -> ExecutorRunSummary:
        return ExecutorRunSummary.model_validate(await self.request("POST", "/ops/automation-jobs/run"))

    # Constraints

    async def get_quiet_hours(self, *, supplier_id: uuid.UUID | None = None) -> list[QuietHoursRead]:
        rows = await self.request("GET", "/communication/quiet-hours", params=_params(supplier_id=supplier_id))
        return [QuietHoursRead.model_validate(row) for row in rows]

    async def upsert_quiet_hours(self, config: QuietHoursUpsert | Mapping[str, Any]) -> QuietHoursRead:
        payload = _validated(QuietHoursUpsert, config)
        body = await self.request("PUT", "/communication/quiet-hours", json=payload.model_dump(mode="json"))
        return QuietHoursRead.model_validate(body)

    async def get_rate_limits(self, *, supplier_id: uuid.UUID | None = None) -> list[RateLimitRead]:
        rows = await self.request("GET", "/communication/rate-limits", params=_params(supplier_id=supplier_id))
        return [RateLimitRead.model_validate(row) for row in rows]

    async def upsert_rate_limit(self, config: RateLimitUpsert | Mapping[str, Any]) -> RateLimitRead:
        payload = _validated(RateLimitUpsert, config)
        body = await self.request("PUT", "/communication/rate-limits", json=payload.model_dump(mode="json"))
        return RateLimitRead.model_validate(body)

    async def get_opt_outs(self, *, supplier_id: uuid.UUID | None = None) -> list[OptOutRead]:
        rows = await self.request("GET", "/communication/opt-outs", params=_params(supplier_id=supplier_id))
        return [OptOutRead.model_validate(row) for row in rows]

    async def create_opt_out(self, opt_out: OptOutCreate | Mapping[str, Any]) -> OptOutRead:
        payload = _validated(OptOutCreate, opt_out)
        body = await self.request("POST", "/communication/opt-outs", json=payload.model_dump(mode="json"))
        return OptOutRead.model_validate(body)

    # Notifications

    async def list_notifications(
        self, *, type: str | None = None, unread: bool = False, limit: int | None = None
    ) -> list[NotificationRead]:
        rows = await self.request(
            "GET", "/notifications", params=_params(type=type, unread=unread or None, limit=limit)
        )
        return [NotificationRead.model_validate(row) for row in rows]

    async def unread_count(self) -> int:
        return UnreadCount.model_validate(await self.request("GET", "/notifications/unread-count")).count

    async def mark_read(self, notification_id: uuid.UUID) -> NotificationRead:
        body = await self.request("POST", f"/notifications/{notification_id}/read")
        return NotificationRead.model_validate(body)

    async def mark_all_read(self) -> int:
        return MarkAllReadResult.model_validate(await self.request("POST", "/notifications/read-all")).updated

    async def get_notification_preferences(self) -> NotificationPreferencesRead:
        body = await self.request("GET", "/notifications/preferences")
        return NotificationPreferencesRead.model_validate(body)

    async def update_notification_preferences(
        self, changes: NotificationPreferencesUpdate | Mapping[str, Any]
    ) -> NotificationPreferencesRead:
        """Send only the fields that were set; unknown fields or categories fail locally."""
        payload = _validated(NotificationPreferencesUpdate, changes)
        body = await self.request(
            "PUT", "/notifications/preferences", json=payload.model_dump(mode="json", exclude_unset=True)
        )
        return NotificationPreferencesRead.model_validate(body)
