"""
Live activity push client for APNs.
Sends ActivityKit start/update/end events over HTTP/2 with token auth.
"""
from __future__ import annotations

import json
import time
from typing import Any, Optional

import httpx

from shared.models.domain import ContentState
from shared.models.enums import LiveActivityEvent
from shared.utils.logging import get_logger, redact_token
from shared.utils.metrics import PUSH_LATENCY, PUSH_REQUESTS

from push.token import PushTokenSource

logger = get_logger(__name__)

# 403 reasons that mean our JWT is stale or wrong; a fresh one may succeed.
TOKEN_REJECTION_REASONS = frozenset({"ExpiredProviderToken", "InvalidProviderToken"})
# Reasons that mean the device token itself will never be accepted again.
DEAD_DEVICE_REASONS = frozenset({"Unregistered", "BadDeviceToken"})


class DeliveryError(Exception):
    """Raised when APNs does not accept a push."""

    def __init__(self, status_code: int, body: str, device_token: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.device_token = device_token
        self.reason = _reason_from_body(body)
        super().__init__(f"APNs error {status_code}: {body}")

    @property
    def device_token_dead(self) -> bool:
        return self.status_code == 410 or self.reason in DEAD_DEVICE_REASONS


def _reason_from_body(body: str) -> Optional[str]:
    try:
        parsed = json.loads(body)
    except ValueError:
        return None
    return parsed.get("reason") if isinstance(parsed, dict) else None


def build_payload(
    content_state: ContentState | dict[str, Any],
    event: LiveActivityEvent,
    timestamp: Optional[int] = None,
    dismissal_date: Optional[int] = None,
    attributes_type: Optional[str] = None,
    attributes: Optional[dict[str, Any]] = None,
    alert: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build the standard ``{"aps": {...}}`` envelope for a live activity event."""
    state = content_state.to_wire() if isinstance(content_state, ContentState) else content_state
    aps: dict[str, Any] = {
        "timestamp": int(time.time()) if timestamp is None else timestamp,
        "event": event.value,
        "content-state": state,
    }
    if dismissal_date is not None:
        aps["dismissal-date"] = dismissal_date
    if attributes_type is not None:
        aps["attributes-type"] = attributes_type
        aps["attributes"] = attributes or {}
    if alert is not None:
        aps["alert"] = alert
    return {"aps": aps}


class LiveActivityClient:
    """
    Authenticated HTTP/2 client for APNs live activity pushes.

    Args:
        token_source: Produces the provider bearer token.
        topic: ``<bundle id>.push-type.liveactivity``.
        base_url: APNs origin (sandbox or production).
        priority: Default ``apns-priority`` header value.
        timeout_s: Per-request timeout.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        token_source: PushTokenSource,
        topic: str,
        base_url: str = "https://api.sandbox.push.apple.com",
        priority: int = 10,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._tokens = token_source
        self._topic = topic
        self._base_url = base_url.rstrip("/")
        self._priority = priority
        self._timeout = timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying HTTP/2 client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            http2=True,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LiveActivityClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def get_token(self) -> str:
        return self._tokens.get_token()

    async def send(
        self,
        device_token: str,
        payload: dict[str, Any],
        event: LiveActivityEvent,
        priority: Optional[int] = None,
    ) -> None:
        """
        POST a payload to one device.

        Raises:
            SigningError: The provider token could not be generated.
            DeliveryError: APNs answered with a non-2xx status or the request failed.
        """
        if not self._client:
            raise RuntimeError("LiveActivityClient not started. Call start() first.")

        headers = {
            "authorization": f"bearer {self.get_token()}",
            "apns-topic": self._topic,
            "apns-push-type": event.push_type,
            "apns-priority": str(self._priority if priority is None else priority),
            "content-type": "application/json",
        }

        start = time.perf_counter()
        try:
            resp = await self._client.post(
                f"/3/device/{device_token}",
                content=json.dumps(payload),
                headers=headers,
            )
        except httpx.HTTPError as exc:
            PUSH_REQUESTS.labels(event=event.value, status="error").inc()
            logger.warning(
                "push_request_error",
                activity_event=event.value,
                device_token=redact_token(device_token),
                error=str(exc),
            )
            raise DeliveryError(0, str(exc), device_token) from exc
        finally:
            PUSH_LATENCY.observe(time.perf_counter() - start)

        PUSH_REQUESTS.labels(event=event.value, status=str(resp.status_code)).inc()

        if not resp.is_success:
            error = DeliveryError(resp.status_code, resp.text, device_token)
            if resp.status_code == 403 and error.reason in TOKEN_REJECTION_REASONS:
                self._tokens.invalidate()
            raise error

        logger.debug(
            "push_sent",
            activity_event=event.value,
            device_token=redact_token(device_token),
            apns_id=resp.headers.get("apns-id"),
        )

    # ── Event wrappers ──────────────────────────────────────────────────

    async def start_activity(
        self,
        device_token: str,
        content_state: ContentState,
        attributes_type: Optional[str] = None,
        attributes: Optional[dict[str, Any]] = None,
        alert: Optional[dict[str, Any]] = None,
    ) -> None:
        payload = build_payload(
            content_state,
            LiveActivityEvent.START,
            attributes_type=attributes_type,
            attributes=attributes,
            alert=alert,
        )
        await self.send(device_token, payload, LiveActivityEvent.START)

    async def update_activity(self, device_token: str, content_state: ContentState) -> None:
        payload = build_payload(content_state, LiveActivityEvent.UPDATE)
        await self.send(device_token, payload, LiveActivityEvent.UPDATE)

    async def end_activity(
        self,
        device_token: str,
        content_state: ContentState,
        dismissal_delay_s: Optional[float] = None,
    ) -> None:
        """End the activity; with a delay, iOS keeps it on screen until the dismissal date."""
        now = int(time.time())
        dismissal_date = now + int(dismissal_delay_s) if dismissal_delay_s is not None else None
        payload = build_payload(
            content_state,
            LiveActivityEvent.END,
            timestamp=now,
            dismissal_date=dismissal_date,
        )
        await self.send(device_token, payload, LiveActivityEvent.END)
