import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from campaign_webhooks.webhook_monitor.exceptions import DeliveryError
from campaign_webhooks.webhook_monitor.types import (
    DeliveryOutcome,
    DeliveryTarget,
    MonitorSettings,
)

# ========================================
# Retry State Machine
# ========================================


class RetryPhase(enum.Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"


TERMINAL_PHASES = (RetryPhase.SUCCEEDED, RetryPhase.FAILED, RetryPhase.ABANDONED)


@dataclass
class RetryState:
    """
    Attempt bookkeeping of one delivery

    max_attempts is the total attempt budget. After a failed attempt the
    state either moves to WAITING with next_delay set (exponential, capped)
    or to FAILED once the budget is spent. A state created with
    attempt_count already at the budget (a resumed delivery) starts FAILED.
    """

    max_attempts: int
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 60.0
    attempt_count: int = 0
    phase: RetryPhase = RetryPhase.PENDING
    next_delay: float = 0.0

    def __post_init__(self):
        if self.attempt_count >= self.max_attempts:
            self.phase = RetryPhase.FAILED

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def start_attempt(self) -> int:
        if self.phase not in (RetryPhase.PENDING, RetryPhase.WAITING):
            raise RuntimeError(f"Cannot start an attempt from {self.phase.value}")
        self.attempt_count += 1
        self.phase = RetryPhase.IN_FLIGHT
        self.next_delay = 0.0
        return self.attempt_count

    def record_success(self):
        self._require_in_flight()
        self.phase = RetryPhase.SUCCEEDED

    def record_failure(self):
        self._require_in_flight()
        if self.attempt_count >= self.max_attempts:
            self.phase = RetryPhase.FAILED
            return
        self.phase = RetryPhase.WAITING
        self.next_delay = min(
            self.base_delay_seconds * (2 ** (self.attempt_count - 1)),
            self.max_delay_seconds,
        )

    def abandon(self):
        if not self.is_terminal:
            self.phase = RetryPhase.ABANDONED
            self.next_delay = 0.0

    def _require_in_flight(self):
        if self.phase != RetryPhase.IN_FLIGHT:
            raise RuntimeError(f"No attempt in flight ({self.phase.value})")


# ========================================
# Delivery Engine
# ========================================


class DeliveryEngine:
    """Posts JSON payloads to webhook endpoints with timeout and bounded retries"""

    def __init__(
        self,
        settings: MonitorSettings,
        stop_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.stop_event = stop_event or threading.Event()
        self.logger = logger or logging.getLogger("campaign_webhooks.delivery_engine")

    def deliver(
        self,
        target: DeliveryTarget,
        payload: Dict[str, Any],
        event_type: str,
        delivery_id: str,
        on_attempt: Optional[Callable[[int], None]] = None,
        previous_attempts: int = 0,
    ) -> DeliveryOutcome:
        """
        Deliver a payload, retrying until success or the attempt budget is spent

        on_attempt is called with the attempt number before each attempt.
        A shutdown (stop_event) during a backoff wait abandons the
        remaining attempts. previous_attempts counts attempts already made
        for this delivery (before a restart) against the budget.
        """
        headers = self.build_headers(target, event_type, delivery_id)
        state = RetryState(
            max_attempts=max(1, target.retry_count),
            base_delay_seconds=self.settings.retry_base_delay_seconds,
            max_delay_seconds=self.settings.retry_max_delay_seconds,
            attempt_count=max(0, previous_attempts),
        )
        status_code: Optional[int] = None
        response_body: Optional[str] = None
        error: Optional[str] = None
        if state.is_terminal:
            error = f"Retry budget of {state.max_attempts} attempts already spent"

        while not state.is_terminal:
            attempt = state.start_attempt()
            if on_attempt:
                on_attempt(attempt)

            try:
                status_code, response_body = self._post(target, payload, headers)
                error = None
                state.record_success()
            except DeliveryError as e:
                status_code = e.status_code
                response_body = e.response_body
                error = e.message
                state.record_failure()
                self.logger.warning(
                    f"Webhook delivery {delivery_id} attempt {attempt}/{state.max_attempts} failed: {error}"
                )

            if state.phase == RetryPhase.WAITING and self.stop_event.wait(
                state.next_delay
            ):
                state.abandon()
                error = f"{error} (remaining retries abandoned on shutdown)"

        success = state.phase == RetryPhase.SUCCEEDED
        if success:
            self.logger.info(
                f"Webhook delivery {delivery_id} ({event_type}) succeeded after {state.attempt_count} attempt(s)"
            )
        else:
            self.logger.error(
                f"Webhook delivery {delivery_id} ({event_type}) failed after {state.attempt_count} attempt(s): {error}"
            )

        return DeliveryOutcome(
            success=success,
            attempt_count=state.attempt_count,
            status_code=status_code,
            response_body=response_body,
            error=error,
        )

    def build_headers(
        self, target: DeliveryTarget, event_type: str, delivery_id: str
    ) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.user_agent,
            "X-Webhook-Event": event_type,
            "X-Webhook-Delivery": delivery_id,
        }
        for name, value in (target.headers or {}).items():
            headers[str(name)] = str(value)
        return headers

    def truncate_body(self, body: Optional[str]) -> Optional[str]:
        limit = self.settings.response_body_limit
        if body is not None and len(body) > limit:
            return body[:limit] + "..."
        return body

    def _post(
        self, target: DeliveryTarget, payload: Dict[str, Any], headers: Dict[str, str]
    ) -> Tuple[int, Optional[str]]:
        try:
            response = requests.post(
                target.url,
                json=payload,
                headers=headers,
                timeout=target.timeout_seconds,
            )
        except requests.exceptions.Timeout as e:
            raise DeliveryError(
                f"Webhook request timed out after {target.timeout_seconds}s",
                original_error=e,
            )
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"Webhook request failed: {e}", original_error=e)

        body = self.truncate_body(response.text)
        if 200 <= response.status_code < 300:
            return response.status_code, body

        raise DeliveryError(
            f"Webhook returned status {response.status_code}",
            status_code=response.status_code,
            response_body=body,
        )
