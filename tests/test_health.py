"""
Tests for remote service probing and offline-mode reconciliation.
"""

from unittest.mock import MagicMock

import pytest
import requests

from studyvault.core.health import (
    ProbeResult,
    RequestsHealthChecker,
    ServiceState,
    check_services,
)
from studyvault.core.registry import SERVICE_CHECKS
from studyvault.core.schema import ServiceCheck, Severity

from conftest import FakeHealthChecker

TUTOR = ServiceCheck(
    function="enem-tutor",
    payload={"messages": [{"role": "user", "content": "ping"}]},
    offline_key="mentor-offline-mode",
    label="Mentor AI",
)


class TestProbeClassification:

    @pytest.mark.parametrize("result,state", [
        (ProbeResult(ok=True, status=200), ServiceState.ONLINE),
        (ProbeResult(ok=True, status=204), ServiceState.ONLINE),
        (ProbeResult(ok=False, status=402), ServiceState.DEGRADED),
        (ProbeResult(ok=False, status=429), ServiceState.DEGRADED),
        (ProbeResult(ok=False, status=0), ServiceState.DEGRADED),
        (ProbeResult(ok=False, status=500), ServiceState.UNEXPECTED),
        (ProbeResult(ok=False, status=404), ServiceState.UNEXPECTED),
    ])
    def test_classify(self, result, state):
        assert result.classify() is state


class TestCheckServices:
    """Test offline flag transitions."""

    def test_quota_exhausted_enters_offline_mode(self, store):
        checker = FakeHealthChecker(default=ProbeResult(ok=False, status=402))

        actions = list(check_services(store, checker, [TUTOR]))

        assert store.get("mentor-offline-mode") == "true"
        assert len(actions) == 1
        assert actions[0].severity is Severity.FIXED
        assert "error 402" in actions[0].detail

    def test_recovery_clears_flag_with_info(self, store):
        store.set("mentor-offline-mode", "true")
        checker = FakeHealthChecker(default=ProbeResult(ok=True, status=200, latency_ms=40))

        actions = list(check_services(store, checker, [TUTOR]))

        assert store.get("mentor-offline-mode") is None
        assert len(actions) == 1
        assert actions[0].severity is Severity.INFO
        assert "recovered" in actions[0].detail

    def test_offline_then_online_transition(self, store):
        list(check_services(store, FakeHealthChecker(default=ProbeResult(ok=False, status=402)), [TUTOR]))
        assert store.get("mentor-offline-mode") == "true"

        actions = list(check_services(store, FakeHealthChecker(), [TUTOR]))
        assert store.get("mentor-offline-mode") is None
        assert [a.severity for a in actions] == [Severity.INFO]

    def test_already_offline_is_confirmed(self, store):
        store.set("mentor-offline-mode", "true")
        checker = FakeHealthChecker(default=ProbeResult(ok=False, status=429))

        actions = list(check_services(store, checker, [TUTOR]))

        assert store.get("mentor-offline-mode") == "true"
        assert actions[0].severity is Severity.INFO

    def test_unexpected_status_is_warning_without_mutation(self, store):
        checker = FakeHealthChecker(default=ProbeResult(ok=False, status=500))

        actions = list(check_services(store, checker, [TUTOR]))

        assert store.keys() == []
        assert actions[0].severity is Severity.WARNING
        assert "Error 500" in actions[0].detail

    def test_checker_exception_treated_as_unreachable(self, store):
        checker = FakeHealthChecker(raises={"enem-tutor": ConnectionError("dns failure")})

        actions = list(check_services(store, checker, [TUTOR]))

        assert store.get("mentor-offline-mode") == "true"
        assert actions[0].severity is Severity.FIXED
        assert "no connection" in actions[0].detail

    def test_probes_every_registered_service(self, store):
        checker = FakeHealthChecker()

        actions = list(check_services(store, checker))

        assert [call[0] for call in checker.calls] == [c.function for c in SERVICE_CHECKS]
        assert len(actions) == len(SERVICE_CHECKS)
        assert checker.calls[0][1] == SERVICE_CHECKS[0].payload


class TestRequestsHealthChecker:
    """Test the HTTP probe with a mocked session."""

    def _session(self, status_code=200, side_effect=None):
        session = MagicMock()
        if side_effect is not None:
            session.post.side_effect = side_effect
        else:
            session.post.return_value = MagicMock(status_code=status_code)
        return session

    def test_posts_payload_with_bearer_and_timeout(self):
        session = self._session(200)
        checker = RequestsHealthChecker("https://fn.example/functions/v1/", "secret", timeout=8, session=session)

        result = checker.probe("enem-tutor", {"ping": True})

        assert result.ok is True
        assert result.status == 200
        args, kwargs = session.post.call_args
        assert args[0] == "https://fn.example/functions/v1/enem-tutor"
        assert kwargs["json"] == {"ping": True}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert kwargs["timeout"] == 8

    def test_error_status_is_reported(self):
        checker = RequestsHealthChecker("https://fn.example", "k", session=self._session(402))

        result = checker.probe("enem-simulado", {})

        assert result.ok is False
        assert result.status == 402

    @pytest.mark.parametrize("error", [
        requests.Timeout("timed out"),
        requests.ConnectionError("refused"),
    ])
    def test_transport_failure_has_no_status(self, error):
        checker = RequestsHealthChecker("https://fn.example", "k", session=self._session(side_effect=error))

        result = checker.probe("enem-tutor", {})

        assert result.ok is False
        assert result.status == 0

    def test_missing_base_url_skips_request(self):
        session = self._session(200)
        checker = RequestsHealthChecker("", "k", session=session)

        result = checker.probe("enem-tutor", {})

        assert result.status == 0
        session.post.assert_not_called()
