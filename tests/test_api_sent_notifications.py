from broadcaster.config import QUEUE_SETTINGS
from broadcaster.jobs.queue import DelayQueue
from broadcaster.models.db import Notification
from broadcaster.services.result_data import ManageResultDataService, ResultFields
from broadcaster.services.send_notification import DeliveryOutcome, SendResultType


def _create_draft(client, title="Maintenance window"):
    r = client.post(
        "/api/v1/notifications/",
        json={"title": title, "author": "ops", "content": {"content": "Down at 22:00 UTC"}},
    )
    assert r.status_code == 201, r.text
    return r.json()


def test_create_and_list_drafts(client):
    draft = _create_draft(client)
    assert draft["is_draft"] is True
    r = client.get("/api/v1/notifications/drafts")
    assert r.status_code == 200
    assert [d["id"] for d in r.json()] == [draft["id"]]


def test_send_draft_fans_out_and_marks_sent(client, send_queue, db_session):
    draft = _create_draft(client)
    r = client.post(
        "/api/v1/sent-notifications/",
        json={
            "notification_id": draft["id"],
            "recipients": [{"recipient_id": "u1"}, {"recipient_id": "u2"}, {"recipient_id": "c1", "recipient_type": "channel"}],
        },
    )
    assert r.status_code == 202, r.text
    body = r.json()
    assert body["data"]["recipients_enqueued"] == 3
    assert send_queue.depth() == 3

    n = db_session.get(Notification, draft["id"])
    assert n.is_draft is False
    assert n.sent_at is not None
    assert n.total_recipients == 3
    assert client.get("/api/v1/notifications/drafts").json() == []


def test_send_unknown_notification_404(client, send_queue):
    r = client.post("/api/v1/sent-notifications/", json={"notification_id": "nope", "recipients": [{"recipient_id": "u1"}]})
    assert r.status_code == 404
    assert r.json()["success"] is False
    assert send_queue.depth() == 0


def test_send_twice_conflicts(client):
    draft = _create_draft(client)
    payload = {"notification_id": draft["id"], "recipients": [{"recipient_id": "u1"}]}
    assert client.post("/api/v1/sent-notifications/", json=payload).status_code == 202
    assert client.post("/api/v1/sent-notifications/", json=payload).status_code == 409


def test_send_requires_recipients(client):
    draft = _create_draft(client)
    r = client.post("/api/v1/sent-notifications/", json={"notification_id": draft["id"], "recipients": []})
    assert r.status_code == 422


def test_sent_notification_counts_from_results(client, session_factory):
    draft = _create_draft(client)
    recipients = [{"recipient_id": rid} for rid in ("u1", "u2", "u3", "u4", "u5")]
    client.post("/api/v1/sent-notifications/", json={"notification_id": draft["id"], "recipients": recipients})

    results = ManageResultDataService(session_factory)
    results.record(draft["id"], "u1", DeliveryOutcome(SendResultType.SUCCEEDED, 201, [201], 0))
    results.record(draft["id"], "u2", DeliveryOutcome(SendResultType.SUCCEEDED, 201, [429, 201], 1))
    results.record(draft["id"], "u3", DeliveryOutcome(SendResultType.RECIPIENT_NOT_FOUND, 404, [404], 0))
    results.record(draft["id"], "u4", ResultFields(-2, "-2,", 0, "RuntimeError: boom"))

    r = client.get(f"/api/v1/sent-notifications/{draft['id']}")
    assert r.status_code == 200, r.text
    counts = r.json()["counts"]
    assert counts["succeeded"] == 2
    assert counts["recipient_not_found"] == 1
    assert counts["retrying"] == 1
    assert counts["failed"] == 0
    assert counts["pending"] == 1

    listing = client.get("/api/v1/sent-notifications/").json()
    assert [s["id"] for s in listing] == [draft["id"]]


def test_draft_is_not_a_sent_notification(client):
    draft = _create_draft(client)
    assert client.get(f"/api/v1/sent-notifications/{draft['id']}").status_code == 404


def test_send_rejected_by_full_queue_keeps_draft(client, db_session, monkeypatch):
    draft = _create_draft(client)
    payload = {"notification_id": draft["id"], "recipients": [{"recipient_id": "u1"}, {"recipient_id": "u2"}]}

    monkeypatch.setitem(QUEUE_SETTINGS, "max_in_memory", 1)
    full_queue = DelayQueue()
    client.app.state.send_queue = full_queue
    try:
        r = client.post("/api/v1/sent-notifications/", json=payload)
    finally:
        full_queue.shutdown()
    assert r.status_code == 503
    assert r.json()["success"] is False

    n = db_session.get(Notification, draft["id"])
    assert n.is_draft is True
    assert n.sent_at is None
    assert [d["id"] for d in client.get("/api/v1/notifications/drafts").json()] == [draft["id"]]

    # Once the queue has room the same draft can be sent
    monkeypatch.setitem(QUEUE_SETTINGS, "max_in_memory", 100)
    retry_queue = DelayQueue()
    client.app.state.send_queue = retry_queue
    try:
        r = client.post("/api/v1/sent-notifications/", json=payload)
        assert r.status_code == 202, r.text
        assert r.json()["data"]["recipients_enqueued"] == 2
        assert retry_queue.depth() == 2
    finally:
        retry_queue.shutdown()


def test_throttled_count_is_final_429_and_waiting_jobs_are_pending(client, session_factory):
    draft = _create_draft(client)
    recipients = [{"recipient_id": rid} for rid in ("u1", "u2", "u3")]
    client.post("/api/v1/sent-notifications/", json={"notification_id": draft["id"], "recipients": recipients})

    results = ManageResultDataService(session_factory)
    # Budget ran out on a mixed trail ending in 429
    results.record(draft["id"], "u1", DeliveryOutcome(SendResultType.FAILED, 429, [500, 429], 1))
    results.record(draft["id"], "u2", DeliveryOutcome(SendResultType.SUCCEEDED, 201, [201], 0))
    # u3 was requeued behind the throttle window and has no row

    counts = client.get(f"/api/v1/sent-notifications/{draft['id']}").json()["counts"]
    assert counts["throttled"] == 1
    assert counts["failed"] == 0
    assert counts["succeeded"] == 1
    assert counts["pending"] == 1
