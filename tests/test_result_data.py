import pytest

from broadcaster.models.db import DeliveryStatus, SentNotificationData
from broadcaster.services.result_data import ManageResultDataService, ResultFields, delivery_status_for
from broadcaster.services.send_notification import DeliveryOutcome, SendResultType


def _snapshot(row):
    # sent_at is left out: every write stamps the time of that write
    return (
        row.status_code,
        row.all_status_codes,
        row.total_throttle_count,
        row.is_status_code_from_create_conversation,
        row.delivery_status,
        row.error_message,
    )


def test_records_success_outcome(session_factory, notification_factory, result_lookup):
    n = notification_factory()
    service = ManageResultDataService(session_factory)
    outcome = DeliveryOutcome(SendResultType.SUCCEEDED, 201, [201], 0)
    assert service.record(n.id, "user-1", outcome) == DeliveryStatus.SUCCEEDED

    row = result_lookup(n.id, "user-1")
    assert row.status_code == 201
    assert row.all_status_codes == "201,"
    assert row.total_throttle_count == 0
    assert row.is_status_code_from_create_conversation is False
    assert row.sent_at is not None


def test_recording_twice_matches_once_apart_from_sent_at(session_factory, notification_factory, result_lookup, db_session):
    n = notification_factory()
    service = ManageResultDataService(session_factory)
    outcome = DeliveryOutcome(SendResultType.FAILED, 500, [429, 500], 1, "scripted 500")

    service.record(n.id, "user-1", outcome)
    first = result_lookup(n.id, "user-1")
    service.record(n.id, "user-1", outcome)
    second = result_lookup(n.id, "user-1")

    assert _snapshot(first) == _snapshot(second)
    assert second.sent_at >= first.sent_at
    assert db_session.query(SentNotificationData).filter_by(notification_id=n.id).count() == 1


def test_later_write_fully_replaces_earlier(session_factory, notification_factory, result_lookup):
    n = notification_factory()
    service = ManageResultDataService(session_factory)
    service.record(n.id, "user-1", ResultFields(-2, "-2,", 0, "RuntimeError: boom"))
    service.record(n.id, "user-1", DeliveryOutcome(SendResultType.SUCCEEDED, 201, [201], 0))

    row = result_lookup(n.id, "user-1")
    assert row.status_code == 201
    assert row.all_status_codes == "201,"
    assert row.error_message is None
    assert row.delivery_status == DeliveryStatus.SUCCEEDED


def test_conversation_creation_flag_is_stored(session_factory, notification_factory, result_lookup):
    n = notification_factory()
    ManageResultDataService(session_factory).record(
        n.id,
        "user-1",
        DeliveryOutcome(SendResultType.RECIPIENT_NOT_FOUND, 404, [404], 0, "gone"),
        is_from_conversation_creation=True,
    )
    row = result_lookup(n.id, "user-1")
    assert row.is_status_code_from_create_conversation is True
    assert row.delivery_status == DeliveryStatus.RECIPIENT_NOT_FOUND


@pytest.mark.parametrize(
    "code,status",
    [
        (200, DeliveryStatus.SUCCEEDED),
        (201, DeliveryStatus.SUCCEEDED),
        (404, DeliveryStatus.RECIPIENT_NOT_FOUND),
        (429, DeliveryStatus.THROTTLED),
        (-2, DeliveryStatus.RETRYING),
        (-1, DeliveryStatus.FAULTED),
        (500, DeliveryStatus.FAILED),
        (408, DeliveryStatus.FAILED),
    ],
)
def test_delivery_status_derivation(code, status):
    assert delivery_status_for(code) == status
