"""HTTP client for the remote response, qualification and aggregation APIs."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from compliance_engine.config.settings import Config, get_config
from compliance_engine.core.lifecycle import AuditEvent
from compliance_engine.errors.exceptions import (
    AuditNotFoundError,
    AuditStateError,
    RemotePersistenceError,
    RemoteTimeoutError,
    ValidationError,
)
from compliance_engine.schemas.analytics import (
    DrilldownPage,
    DrilldownRequest,
    Filter,
    Funnel,
    Heatmap,
    Pagination,
    Radar,
    Sort,
    Summary,
    Timeseries,
    TimeseriesRequest,
)
from compliance_engine.schemas.audit import (
    AuditCreateRequest,
    AuditCreateResponse,
    QuestionSetResponse,
)
from compliance_engine.schemas.catalog import Audit, QualificationProfile
from compliance_engine.schemas.common import DrilldownType, Granularity
from compliance_engine.schemas.response import (
    Response,
    ResponseDraft,
    ResponseSaveRequest,
    SaveAck,
)
from compliance_engine.schemas.scoring import SiteScores
from compliance_engine.services.circuit_breaker import (
    CircuitBreaker,
    get_remote_store_circuit_breaker,
)

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except (ValueError, AttributeError):
        detail = None
    return str(detail) if detail else response.text or response.reason_phrase


class RemoteAuditClient:
    """
    Async client for the /v1 API.

    Network failures, timeouts and 5xx answers are retried with exponential
    backoff and counted by the remote-store circuit breaker. 4xx answers are
    mapped to domain errors and never retried.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        config: Config | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ):
        self.config = config or get_config()
        headers = {}
        token = token or self.config.remote_api_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url or self.config.remote_api_url,
            headers=headers,
            timeout=timeout or self.config.remote_write_timeout,
            transport=transport,
        )
        self.circuit_breaker = circuit_breaker or get_remote_store_circuit_breaker()

    async def __aenter__(self) -> RemoteAuditClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        self.circuit_breaker.ensure_can_execute()
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            self.circuit_breaker.record_failure()
            raise RemoteTimeoutError(f"{method} {path} timed out: {e}") from e
        except httpx.RequestError as e:
            self.circuit_breaker.record_failure()
            raise RemotePersistenceError(f"Failed to reach remote store: {e}") from e

        if response.status_code >= 500:
            self.circuit_breaker.record_failure()
            raise RemotePersistenceError(
                f"{method} {path} returned {response.status_code}: {_error_detail(response)}"
            )

        # The server answered, so the dependency itself is healthy
        self.circuit_breaker.record_success()
        if response.status_code in (400, 422):
            raise ValidationError(_error_detail(response))
        if response.status_code == 404:
            raise AuditNotFoundError(_error_detail(response))
        if response.status_code == 409:
            raise AuditStateError(_error_detail(response))
        if response.status_code >= 400:
            raise RemotePersistenceError(
                f"{method} {path} returned {response.status_code}: {_error_detail(response)}"
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request, retrying transient remote failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.remote_retry_attempts)),
            wait=wait_exponential(
                multiplier=self.config.remote_retry_wait_min,
                min=self.config.remote_retry_wait_min,
                max=self.config.remote_retry_wait_max,
            ),
            retry=retry_if_exception_type(RemotePersistenceError),
            reraise=True,
        ):
            with attempt:
                return await self._send(method, path, **kwargs)
        return None

    # === Response API ===

    async def create_audit(self, request: AuditCreateRequest) -> AuditCreateResponse:
        data = await self._request("POST", "/v1/audits", json=request.model_dump(mode="json"))
        return AuditCreateResponse.model_validate(data)

    async def apply_event(self, audit_id: int, event: AuditEvent) -> Audit:
        """Complete, close or reopen an audit."""
        data = await self._request("POST", f"/v1/audits/{audit_id}/{event.value}")
        return Audit.model_validate(data)

    async def list_questions(self, audit_id: int) -> QuestionSetResponse:
        data = await self._request("GET", f"/v1/audits/{audit_id}/questions")
        return QuestionSetResponse.model_validate(data)

    async def get_responses(self, audit_id: int) -> list[Response]:
        data = await self._request("GET", f"/v1/audits/{audit_id}/responses")
        return [Response.model_validate(item) for item in data or []]

    async def save_response(
        self, audit_id: int, question_key: str, draft: ResponseDraft
    ) -> SaveAck:
        """Send one answer; the draft's updated_at orders concurrent writes."""
        body = ResponseSaveRequest(
            response_value=draft.response_value,
            comment=draft.comment,
            evidence_files=list(draft.evidence_files),
            updated_at=draft.updated_at,
        )
        data = await self._request(
            "PUT",
            f"/v1/audits/{audit_id}/responses/{question_key}",
            json=body.model_dump(mode="json"),
        )
        return SaveAck.model_validate(data)

    # === Qualification API ===

    async def get_qualification(self) -> QualificationProfile | None:
        data = await self._request("GET", "/v1/qualification")
        return QualificationProfile.model_validate(data) if data else None

    async def save_qualification(self, profile: QualificationProfile) -> QualificationProfile:
        data = await self._request("PUT", "/v1/qualification", json=profile.model_dump(mode="json"))
        return QualificationProfile.model_validate(data)

    # === Aggregation API ===

    async def _analytics(self, name: str, body: dict[str, Any]) -> Any:
        return await self._request("POST", f"/v1/analytics/{name}", json=body)

    async def get_summary(self, flt: Filter | None = None) -> Summary:
        data = await self._analytics("summary", (flt or Filter()).model_dump(mode="json"))
        return Summary.model_validate(data)

    async def get_funnel(self, flt: Filter | None = None) -> Funnel:
        data = await self._analytics("funnel", (flt or Filter()).model_dump(mode="json"))
        return Funnel.model_validate(data)

    async def get_timeseries(
        self, flt: Filter | None = None, granularity: Granularity = Granularity.MONTH
    ) -> Timeseries:
        body = TimeseriesRequest(filter=flt or Filter(), granularity=granularity)
        data = await self._analytics("timeseries", body.model_dump(mode="json"))
        return Timeseries.model_validate(data)

    async def get_heatmap(self, flt: Filter | None = None) -> Heatmap:
        data = await self._analytics("heatmap", (flt or Filter()).model_dump(mode="json"))
        return Heatmap.model_validate(data)

    async def get_radar(self, flt: Filter | None = None) -> Radar:
        data = await self._analytics("radar", (flt or Filter()).model_dump(mode="json"))
        return Radar.model_validate(data)

    async def get_site_scores(self, flt: Filter | None = None) -> SiteScores:
        data = await self._analytics("sites", (flt or Filter()).model_dump(mode="json"))
        return SiteScores.model_validate(data)

    async def get_drilldown(
        self,
        kind: DrilldownType,
        flt: Filter | None = None,
        pagination: Pagination | None = None,
        sort: Sort | None = None,
    ) -> DrilldownPage:
        body = DrilldownRequest(
            type=kind,
            filter=flt or Filter(),
            pagination=pagination or Pagination(),
            sort=sort or Sort(),
        )
        data = await self._analytics("drilldown", body.model_dump(mode="json"))
        return DrilldownPage.model_validate(data)
