"""
Unit tests for the virtual-user executor.

A fake transport stands in for the API so each test controls exactly
which responses (or transport errors) a VU sees.
"""

import threading

import pytest

from load_harness.exceptions import TransportError
from load_harness.executor import VirtualUserExecutor
from load_harness.metrics import HTTP_REQ_DURATION, HTTP_REQ_FAILED, HTTP_REQS, ITERATIONS
from load_harness.models import VirtualUser, VUState
from load_harness.payloads import STUDENT_FIELDS
from load_harness.workloads import get_workload
from load_harness.workloads.student_registration import STUDENT_CREATE_METRIC
from tests.fakes import FakeTransport, HealthyTarget, json_response


pytestmark = pytest.mark.unit


@pytest.fixture
def workload(settings):
    return get_workload("student-registration", settings)


@pytest.fixture
def make_executor(workload, users_dataset, registry, check_engine, settings):
    """Build an executor for VU ``vu_id`` around a FakeTransport with ``handler``."""

    def _make(handler=None, vu_id=1):
        vu = VirtualUser.create(vu_id, len(users_dataset))
        transport = FakeTransport(handler)
        executor = VirtualUserExecutor(
            vu=vu,
            workload=workload,
            dataset=users_dataset,
            transport=transport,
            registry=registry,
            checks=check_engine,
            base_url=settings.BASE_URL,
            think_time=0,
        )
        return executor, transport

    return _make


def _all_checks_passed(check_engine):
    return all(summary.failed == 0 for summary in check_engine.summary().values())


def test_successful_iteration_records_metrics_and_checks(make_executor, registry, check_engine):
    # Arrange
    executor, transport = make_executor()

    # Act
    outcome = executor.iterate()

    # Assert
    assert outcome.succeeded
    assert outcome.completed_steps == 2
    assert [call[1] for call in transport.calls] == [
        "http://target.test/login",
        "http://target.test/alunos",
    ]
    assert transport.calls[1][3]["Authorization"] == "Bearer tok-coordenador"
    assert executor.vu.session_token == "tok-coordenador"

    assert registry.counter(HTTP_REQS).total == 2
    assert len(registry.trend(HTTP_REQ_DURATION)) == 2
    assert len(registry.trend(STUDENT_CREATE_METRIC)) == 1
    assert len(registry.trend("login_duration")) == 1
    assert registry.counter(ITERATIONS).total == 1
    assert registry.rate(HTTP_REQ_FAILED).aggregate("rate") == 0.0

    assert len(check_engine.summary()) == 4
    assert _all_checks_passed(check_engine)


def test_vu_uses_its_partitioned_credentials(make_executor):
    executor, transport = make_executor(vu_id=5)

    executor.iterate()

    login_body = transport.calls[0][2]
    assert login_body == {"username": "coordenadorIngles", "password": "ingles1234"}


def test_create_payload_is_randomised_per_iteration(make_executor):
    executor, transport = make_executor()

    executor.iterate()
    executor.iterate()

    first, second = transport.calls[1][2], transport.calls[3][2]
    assert set(first) == set(STUDENT_FIELDS)
    assert first != second


def test_failed_login_skips_create_and_fails_its_checks(make_executor, registry, check_engine):
    # Arrange
    def handler(method, url, body, headers):
        return json_response(401, {"error": "invalid credentials"})

    executor, transport = make_executor(handler)

    # Act
    outcome = executor.iterate()

    # Assert
    assert outcome.failed_steps == 1
    assert outcome.skipped_steps == 1
    assert len(transport.calls) == 1
    assert executor.vu.session_token is None

    summary = check_engine.summary()
    assert summary["login returns status 200"].failed == 1
    assert summary["login returns token"].failed == 1
    assert summary["create student returns status 201"].failed == 1
    assert summary["create student returns an id"].failed == 1

    assert registry.counter(HTTP_REQS).total == 1
    assert registry.rate(HTTP_REQ_FAILED).aggregate("rate") == 1.0
    assert len(registry.trend(STUDENT_CREATE_METRIC)) == 0


def test_transport_error_fails_checks_and_keeps_latency(make_executor, registry, check_engine):
    def handler(method, url, body, headers):
        raise TransportError("read timed out", elapsed_ms=1200.0)

    executor, _ = make_executor(handler)

    outcome = executor.iterate()

    assert outcome.failed_steps == 1
    assert outcome.skipped_steps == 1
    assert registry.trend(HTTP_REQ_DURATION).values() == [1200.0]
    assert registry.rate(HTTP_REQ_FAILED).aggregate("rate") == 1.0
    assert check_engine.summary()["login returns token"].failed == 1


def test_transport_error_without_timing_records_no_latency(make_executor, registry):
    def handler(method, url, body, headers):
        raise TransportError("connection refused")

    executor, _ = make_executor(handler)

    executor.iterate()

    assert len(registry.trend(HTTP_REQ_DURATION)) == 0


def test_failed_check_does_not_stop_the_iteration(make_executor, check_engine):
    # Login works but the create endpoint answers 200 without an id.
    healthy = HealthyTarget()

    def handler(method, url, body, headers):
        if url.endswith("/alunos"):
            return json_response(200, {"ok": True})
        return healthy(method, url, body, headers)

    executor, transport = make_executor(handler)

    outcome = executor.iterate()

    assert len(transport.calls) == 2
    assert outcome.completed_steps == 1
    assert outcome.failed_steps == 1
    summary = check_engine.summary()
    assert summary["create student returns status 201"].failed == 1
    assert summary["login returns token"].passed == 1


def test_session_token_resets_every_iteration(make_executor):
    responses = iter(
        [
            json_response(200, {"token": "first"}),
            json_response(201, {"id": 1}),
            json_response(500, {"error": "boom"}),
        ]
    )

    executor, transport = make_executor(lambda *args: next(responses))

    executor.iterate()
    assert executor.vu.session_token == "first"

    executor.iterate()
    assert executor.vu.session_token is None
    assert len(transport.calls) == 3


def test_run_stops_when_event_is_set_and_retires_vu(make_executor):
    stop = threading.Event()
    stop.set()
    executor, transport = make_executor()

    executor.run(stop)

    assert executor.iterations == 0
    assert executor.vu.state is VUState.RETIRED
    assert transport.closed


def test_run_survives_unexpected_exceptions(make_executor):
    stop = threading.Event()

    def handler(method, url, body, headers):
        stop.set()
        raise RuntimeError("bug in handler")

    executor, transport = make_executor(handler)

    executor.run(stop)

    assert executor.unexpected_errors == 1
    assert executor.vu.state is VUState.RETIRED
    assert transport.closed


def test_run_finishes_current_iteration_after_stop(make_executor):
    stop = threading.Event()
    healthy = HealthyTarget()

    def handler(method, url, body, headers):
        # Retirement requested while the first request is in flight.
        stop.set()
        return healthy(method, url, body, headers)

    executor, transport = make_executor(handler)

    executor.run(stop)

    assert executor.iterations == 1
    assert len(transport.calls) == 2


def test_request_and_cancel_stop_move_between_running_and_draining(make_executor):
    # Arrange
    stop = threading.Event()
    executor, _ = make_executor()
    executor.vu.state = VUState.RUNNING

    # Act / Assert
    assert executor.request_stop(stop)
    assert stop.is_set()
    assert executor.vu.state is VUState.DRAINING
    assert not executor.request_stop(stop)

    assert executor.cancel_stop(stop)
    assert not stop.is_set()
    assert executor.vu.state is VUState.RUNNING
    assert not executor.cancel_stop(stop)


def test_retired_vu_cannot_be_stopped_or_revived(make_executor):
    stop = threading.Event()
    executor, _ = make_executor()
    executor.request_stop(stop)
    executor.run(stop)

    assert not executor.cancel_stop(stop)
    assert not executor.request_stop(stop)
    assert executor.vu.state is VUState.RETIRED
    assert stop.is_set()


def test_cancelled_stop_keeps_the_vu_iterating(make_executor):
    stop = threading.Event()
    healthy = HealthyTarget()
    executor = None

    def handler(method, url, body, headers):
        # Stop requested and withdrawn mid-iteration; stop for good on the third.
        if executor.iterations == 1:
            executor.request_stop(stop)
            executor.cancel_stop(stop)
        elif executor.iterations >= 3:
            executor.request_stop(stop)
        return healthy(method, url, body, headers)

    executor, _ = make_executor(handler)

    executor.run(stop)

    assert executor.iterations == 3
    assert executor.vu.state is VUState.RETIRED
