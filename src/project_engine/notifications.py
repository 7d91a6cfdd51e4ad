"""
Notification Dispatcher module for the project engine.

Delivers "project detected" and "project suggestion" messages to the UI
layer. Delivery is best-effort: channels are retried with exponential
backoff, a missing listener is tolerated, and a failed delivery is logged
but never touches committed engine state.
"""

import asyncio
import inspect
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol, runtime_checkable

import httpx

from .audit_logger import AuditLogger
from .config import RetryConfig, WebhookConfig
from .enums import LogLevel, NotificationKind
from .exceptions import NotificationError
from .models import ProjectCandidate, SuggestionMatch
from .serialization import candidate_to_dict, project_to_dict


@dataclass
class NotificationPayload:
    """A message for the UI layer: a kind id plus a JSON-compatible body."""

    id: NotificationKind
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id.value, "payload": self.payload}


def project_detected_payload(candidate: ProjectCandidate) -> NotificationPayload:
    return NotificationPayload(
        id=NotificationKind.PROJECT_DETECTED,
        payload={"candidate": candidate_to_dict(candidate)},
    )


def project_suggestion_payload(match: SuggestionMatch, url: str, title: str) -> NotificationPayload:
    return NotificationPayload(
        id=NotificationKind.PROJECT_SUGGESTION,
        payload={
            "project": project_to_dict(match.project),
            "score": match.score,
            "url": url,
            "title": title,
        },
    )


@dataclass
class NotificationResult:
    """Outcome of delivering one payload to one channel."""

    channel: str
    success: bool
    error: Optional[str] = None
    attempts: int = 1


@runtime_checkable
class NotificationChannel(Protocol):
    """Anything that can carry a payload to the UI layer."""

    @abstractmethod
    async def send(self, payload: NotificationPayload) -> bool:
        """
        Send a notification.

        Returns:
            Whether the payload was delivered
        """
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...


class CallbackChannel:
    """
    In-process channel calling a UI listener.

    The listener may be a plain function or a coroutine function, and may
    be attached or detached at any time.
    """

    def __init__(self, listener: Optional[Callable[[NotificationPayload], Any]] = None) -> None:
        self._listener = listener

    def set_listener(self, listener: Optional[Callable[[NotificationPayload], Any]]) -> None:
        self._listener = listener

    async def send(self, payload: NotificationPayload) -> bool:
        """
        Hand the payload to the listener.

        Raises:
            NotificationError: If no listener is attached
        """
        if self._listener is None:
            raise NotificationError(
                code="no_listener",
                message="No notification listener attached",
                details={"notification_id": payload.id.value},
            )
        result = self._listener(payload)
        if inspect.isawaitable(result):
            result = await result
        return result is not False

    def get_name(self) -> str:
        return "callback"


class WebhookChannel:
    """POSTs each payload as JSON to a configured URL."""

    def __init__(
        self,
        config: WebhookConfig,
        simulation_mode: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Create a channel for one webhook endpoint.

        Args:
            config: Target URL, extra headers and timeout
            simulation_mode: Report success without sending anything
            transport: Optional httpx transport (e.g. httpx.MockTransport)
        """
        self._url = config.url
        self._headers = config.headers.copy()
        self._timeout = config.timeout_seconds
        self._simulation_mode = simulation_mode
        self._transport = transport

    async def send(self, payload: NotificationPayload) -> bool:
        if self._simulation_mode:
            return True

        data = dict(payload.to_dict(), sent_at=datetime.now(timezone.utc).isoformat())
        headers = {"Content-Type": "application/json"}
        headers.update(self._headers)

        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.post(
                    self._url,
                    json=data,
                    headers=headers,
                    timeout=self._timeout,
                )
                return 200 <= response.status_code < 300
            except httpx.HTTPError:
                return False

    def get_name(self) -> str:
        return "webhook"


@dataclass
class RetryAttempt:
    """One delivery attempt on one channel."""

    attempt_number: int
    error: str
    timestamp: str


class NotificationDispatcher:
    """
    Fire-and-forget delivery of notifications to registered channels.

    dispatch() awaits delivery and returns per-channel results;
    dispatch_nowait() schedules it as a background task so the caller's
    committed state change never waits on, or depends on, the UI.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            retry_config: Attempt count and backoff bounds
            logger: Optional audit logger for delivery failures
        """
        self._channels: list[NotificationChannel] = []
        self._retry_config = retry_config or RetryConfig()
        self._logger = logger
        self._pending: set[asyncio.Task] = set()

    def register_channel(self, channel: NotificationChannel) -> None:
        self._channels.append(channel)

    def unregister_channel(self, channel_name: str) -> bool:
        """
        Unregister a channel by name.

        Returns:
            Whether a channel with that name was registered
        """
        for i, channel in enumerate(self._channels):
            if channel.get_name() == channel_name:
                self._channels.pop(i)
                return True
        return False

    @property
    def channels(self) -> list[NotificationChannel]:
        return self._channels.copy()

    async def dispatch(self, payload: NotificationPayload) -> list[NotificationResult]:
        """Deliver to every channel; never raises."""
        if not self._channels:
            self._log(LogLevel.DEBUG, "No notification channel registered", {
                "notification_id": payload.id.value,
            })
            return []

        results = []
        for channel in self._channels:
            results.append(await self._send_with_retry(channel, payload))
        return results

    def dispatch_nowait(self, payload: NotificationPayload) -> asyncio.Task:
        """Schedule delivery in the background. Requires a running loop."""
        task = asyncio.get_running_loop().create_task(self.dispatch(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every background delivery scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _send_with_retry(
        self,
        channel: NotificationChannel,
        payload: NotificationPayload,
    ) -> NotificationResult:
        channel_name = channel.get_name()
        max_attempts = self._retry_config.max_retries + 1
        attempts = 0
        retry_attempts: list[RetryAttempt] = []
        last_error: Optional[str] = None

        while attempts < max_attempts:
            attempts += 1
            try:
                if await channel.send(payload):
                    return NotificationResult(channel=channel_name, success=True, attempts=attempts)
                last_error = "Channel returned failure"
            except NotificationError as e:
                # Not retryable: nobody is listening
                self._log(LogLevel.DEBUG, "Notification dropped", {
                    "channel": channel_name,
                    "notification_id": payload.id.value,
                    "reason": e.code,
                })
                return NotificationResult(
                    channel=channel_name, success=False, error=e.message, attempts=attempts
                )
            except Exception as e:
                last_error = str(e)

            retry_attempts.append(
                RetryAttempt(
                    attempt_number=attempts,
                    error=last_error,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                )
            )

            if attempts < max_attempts:
                await asyncio.sleep(self._calculate_delay(attempts - 1))

        self._log_all_retries_failed(channel_name, payload, retry_attempts)
        return NotificationResult(
            channel=channel_name, success=False, error=last_error, attempts=attempts
        )

    def _calculate_delay(self, attempt: int) -> float:
        """Exponential backoff for a 0-indexed attempt, capped at max_delay."""
        delay = self._retry_config.base_delay_seconds * (2 ** attempt)
        return min(delay, self._retry_config.max_delay_seconds)

    def _log_all_retries_failed(
        self,
        channel_name: str,
        payload: NotificationPayload,
        retry_attempts: list[RetryAttempt],
    ) -> None:
        self._log(
            LogLevel.ERROR,
            f"All notification retries failed for channel '{channel_name}'",
            {
                "channel": channel_name,
                "notification_id": payload.id.value,
                "total_attempts": len(retry_attempts),
                "attempts": [
                    {"attempt": a.attempt_number, "error": a.error, "timestamp": a.timestamp}
                    for a in retry_attempts
                ],
            },
        )

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "NotificationDispatcher", message, data)
