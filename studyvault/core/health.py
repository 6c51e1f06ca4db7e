"""
Remote service health probing with automatic offline-mode fallback.

Each dependency is probed once per sweep with a hard timeout. Quota exhaustion,
rate limiting and transport failures flip the dependency's offline flag; a
successful probe clears it again.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import requests

from .config import SWEEP_API_KEY, SWEEP_FUNCTIONS_URL, SWEEP_HEALTH_TIMEOUT_SEC
from .registry import SERVICE_CHECKS
from .schema import Category, RepairAction, ServiceCheck, Severity
from .store import KeyValueStore
from util.logging import logger

DEGRADED_STATUSES = (402, 429, 0)  # quota, rate limit, no response
OFFLINE_VALUE = "true"


class ServiceState(str, Enum):
    ONLINE = "online"
    DEGRADED = "degraded"
    UNEXPECTED = "unexpected"


@dataclass
class ProbeResult:
    """Outcome of one probe. status 0 means no HTTP response was received."""
    ok: bool
    status: int
    latency_ms: int = 0

    def classify(self) -> ServiceState:
        if self.ok:
            return ServiceState.ONLINE
        if self.status in DEGRADED_STATUSES:
            return ServiceState.DEGRADED
        return ServiceState.UNEXPECTED


class HealthChecker(ABC):
    """Capability to probe a remote function with a synthetic payload."""

    @abstractmethod
    def probe(self, function: str, payload: Dict[str, Any]) -> ProbeResult:
        pass


class RequestsHealthChecker(HealthChecker):
    """Probe edge functions over HTTP with a bearer key."""

    def __init__(self, base_url: str = None, api_key: str = None, timeout: float = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (SWEEP_FUNCTIONS_URL if base_url is None else base_url).rstrip("/")
        self.api_key = SWEEP_API_KEY if api_key is None else api_key
        self.timeout = timeout or SWEEP_HEALTH_TIMEOUT_SEC
        self.session = session or requests.Session()

    def probe(self, function: str, payload: Dict[str, Any]) -> ProbeResult:
        if not self.base_url:
            logger.warning(f"No functions URL configured - treating '{function}' as unreachable")
            return ProbeResult(ok=False, status=0)

        start = time.monotonic()
        try:
            response = self.session.post(
                f"{self.base_url}/{function}",
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Probe for '{function}' failed without a response: {e}")
            return ProbeResult(ok=False, status=0, latency_ms=_elapsed_ms(start))

        return ProbeResult(
            ok=200 <= response.status_code < 300,
            status=response.status_code,
            latency_ms=_elapsed_ms(start),
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def check_services(store: KeyValueStore, checker: HealthChecker,
                   checks: List[ServiceCheck] = None) -> Iterator[RepairAction]:
    """
    Probe each remote dependency and reconcile its offline flag.

    Args:
        store: Store holding the offline flags
        checker: Probe capability (HTTP in production, fakes in tests)
        checks: Dependencies to probe, defaults to the registry list

    Yields:
        One action per dependency
    """
    for check in checks if checks is not None else SERVICE_CHECKS:
        already_offline = store.get(check.offline_key) == OFFLINE_VALUE
        action_id = f"ai-{check.function}"

        try:
            result = checker.probe(check.function, check.payload)
        except Exception as e:
            # A checker that raises is treated like a transport failure
            logger.warning(f"Health checker raised for '{check.function}': {e}")
            yield _enter_offline(store, check, action_id, already_offline, reason="no connection to the server")
            continue

        state = result.classify()
        logger.log_service_probe(check.function, result.status, result.latency_ms, state.value)

        if state is ServiceState.ONLINE:
            if already_offline:
                store.delete(check.offline_key)
                detail = f"Service recovered ({result.latency_ms}ms); offline mode cleared."
            else:
                detail = f"Service responding normally ({result.latency_ms}ms)."
            yield RepairAction(
                id=action_id,
                category=Category.CONFIG,
                label=f"{check.label} - Online",
                detail=detail,
                severity=Severity.INFO,
            )
        elif state is ServiceState.DEGRADED:
            reason = f"error {result.status}" if result.status else "no connection to the server"
            yield _enter_offline(store, check, action_id, already_offline, reason=reason)
        else:
            yield RepairAction(
                id=action_id,
                category=Category.CONFIG,
                label=f"{check.label} - Unexpected error",
                detail=f"Error {result.status}. Check the function logs.",
                severity=Severity.WARNING,
            )


def _enter_offline(store: KeyValueStore, check: ServiceCheck, action_id: str,
                   already_offline: bool, reason: str) -> RepairAction:
    if already_offline:
        return RepairAction(
            id=action_id,
            category=Category.CONFIG,
            label=f"{check.label} - Offline mode active",
            detail=f"Service unavailable ({reason}), but offline mode was already set. Local data is in use.",
            severity=Severity.INFO,
        )

    store.set(check.offline_key, OFFLINE_VALUE)
    return RepairAction(
        id=action_id,
        category=Category.CONFIG,
        label=f"{check.label} - Offline mode enabled",
        detail=(
            f"Service unavailable ({reason}). Offline mode enabled automatically; "
            "run another sweep to confirm."
        ),
        severity=Severity.FIXED,
    )
