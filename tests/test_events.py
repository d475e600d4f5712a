from datetime import date

import pytest
from fastapi.testclient import TestClient

import main
from scheduler import JobAlreadyRunningError
from schemas import RecurringApprovedEvent
from settlement import SettlementResult, SettlementThrottledError, TransactionNotFoundError
from signing import InvalidEventError, _serializer, sign_event, verify_event


EVENT = RecurringApprovedEvent(
    transactionId="txn-1",
    recurringTemplateId="tpl-1",
    recurringInterval="MONTHLY",
    userId="user-1",
)


def test_signed_event_verifies_to_the_same_payload():
    assert verify_event(sign_event(EVENT)) == EVENT


def test_tampered_or_malformed_events_are_rejected():
    token = sign_event(EVENT)
    with pytest.raises(InvalidEventError):
        verify_event(("x" if token[0] != "x" else "y") + token[1:])

    bad_interval = _serializer().dumps(
        {
            "transactionId": "txn-1",
            "recurringTemplateId": "tpl-1",
            "recurringInterval": "HOURLY",
            "userId": "user-1",
        }
    )
    with pytest.raises(InvalidEventError):
        verify_event(bad_interval)


def test_endpoint_settles_signed_event(monkeypatch):
    seen = []

    def fake_handle(event):
        seen.append(event)
        return SettlementResult(
            transaction_id=event.transaction_id,
            template_id=event.recurring_template_id,
            already_settled=False,
            next_recurring_date=date(2026, 11, 19),
        )

    monkeypatch.setattr(main, "handle_recurring_approved", fake_handle)
    client = TestClient(main.app)
    resp = client.post(
        "/api/events/recurring-approved", json={"token": sign_event(EVENT)}
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "status": "settled",
        "transactionId": "txn-1",
        "recurringTemplateId": "tpl-1",
        "nextRecurringDate": "2026-11-19",
    }
    assert seen == [EVENT]


def test_endpoint_maps_failures_to_status_codes(monkeypatch):
    client = TestClient(main.app)

    resp = client.post("/api/events/recurring-approved", json={"token": "garbage"})
    assert resp.status_code == 400

    def throttled(event):
        raise SettlementThrottledError(event.user_id, 12.0)

    monkeypatch.setattr(main, "handle_recurring_approved", throttled)
    resp = client.post(
        "/api/events/recurring-approved", json={"token": sign_event(EVENT)}
    )
    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "12"

    def missing(event):
        raise TransactionNotFoundError("Pending transaction txn-1 not found")

    monkeypatch.setattr(main, "handle_recurring_approved", missing)
    resp = client.post(
        "/api/events/recurring-approved", json={"token": sign_event(EVENT)}
    )
    assert resp.status_code == 404


def test_manual_run_of_unknown_job_is_404():
    client = TestClient(main.app)
    assert client.post("/api/jobs/nope/run").status_code == 404


def test_manual_run_of_a_busy_job_is_409(monkeypatch):
    def busy(job_id):
        raise JobAlreadyRunningError(f"Job {job_id} is already running")

    monkeypatch.setattr(main.scheduler_manager, "run_now", busy)
    client = TestClient(main.app)
    assert client.post("/api/jobs/budget-alerts/run").status_code == 409
