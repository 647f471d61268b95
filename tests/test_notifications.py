from typing import Any, Dict, List, Tuple

import pytest
from conftest import FailingNotificationSink, RecordingNotificationSink

from app import tasks
from app.celery_app import CallbackTask, celery_app
from app.core import notifications
from app.core.notifications import (
    CeleryNotificationSink,
    notify,
    notify_registration,
    registration_payload,
)
from app.models.registration import Registration, RegistrationStatus


def _waitlisted() -> Registration:
    return Registration(
        id=7,
        event_id=3,
        attendee_id=11,
        status=RegistrationStatus.WAITLISTED,
        waitlist_position=2,
        check_in_code="QX7P2M",
    )


def test_registration_payload() -> None:
    assert registration_payload(_waitlisted()) == {
        "registration_id": 7,
        "event_id": 3,
        "attendee_id": 11,
        "status": "WAITLISTED",
        "waitlist_position": 2,
        "check_in_code": "QX7P2M",
    }


def test_celery_sink_sends_task_by_topic(monkeypatch: pytest.MonkeyPatch) -> None:
    sent: List[Tuple[str, Dict[str, Any]]] = []
    monkeypatch.setattr(
        celery_app, "send_task", lambda name, kwargs: sent.append((name, kwargs))
    )

    notify_registration(CeleryNotificationSink(), "registration_waitlisted", _waitlisted())

    assert sent == [
        ("app.tasks.registration_waitlisted", registration_payload(_waitlisted()))
    ]


def test_notify_can_be_switched_off(monkeypatch: pytest.MonkeyPatch) -> None:
    sink = RecordingNotificationSink()
    monkeypatch.setattr(notifications.settings.registration, "NOTIFICATIONS_ENABLED", False)

    notify(sink, "batch_completed", {"processed": 1})
    notify(None, "batch_completed", {"processed": 1})

    assert sink.published == []


def test_failing_sink_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    notify(FailingNotificationSink(), "registration_cancelled", {"registration_id": 1})
    assert "Failed to publish registration_cancelled" in caplog.text


def test_tasks_accept_the_published_payload() -> None:
    payload = registration_payload(_waitlisted())

    waitlisted = tasks.registration_waitlisted(**payload)
    promoted = tasks.registration_promoted(**payload)

    assert waitlisted["topic"] == "registration_waitlisted"
    assert waitlisted["waitlist_position"] == 2
    assert promoted["check_in_code"] == "QX7P2M"
    for task in (
        tasks.registration_confirmed,
        tasks.registration_cancelled,
        tasks.attendee_checked_in,
    ):
        assert task(**payload)["registration_id"] == 7


def test_batch_completed_task() -> None:
    result = tasks.batch_completed(
        type="registrations", action="cancel", actor_id=1, processed=2, ids=[4, 5]
    )
    assert result["batch_type"] == "registrations"
    assert result["reason"] == "None provided"


def test_task_failure_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    payload = registration_payload(_waitlisted())

    tasks.attendee_checked_in.on_failure(RuntimeError("boom"), "t-1", (), payload, None)

    assert "app.tasks.attendee_checked_in [t-1] failed: boom" in caplog.text
    # Notifications are fire-and-forget; tasks define no retry hook
    assert "on_retry" not in vars(CallbackTask)
