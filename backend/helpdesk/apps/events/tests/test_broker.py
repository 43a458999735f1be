from __future__ import annotations

from helpdesk.apps.events.broker import EventBroker, EventEnvelope


def _envelope(event_id: str) -> EventEnvelope:
    return EventEnvelope(
        id=event_id,
        type="training_assignment.viewed",
        assignmentId="assignment-1",
        eventType="VIEWED",
        timestamp="2026-03-02T09:00:00",
        actor=None,
        metadata={"userId": "user-1", "trainingId": "training-1"},
    )


def test_every_subscriber_receives_published_events():
    broker = EventBroker()
    first = broker.subscribe()
    second = broker.subscribe()

    broker.publish(_envelope("e1"))

    assert first.get_nowait().id == "e1"
    assert second.get_nowait().id == "e1"


def test_publish_without_subscribers_is_a_no_op():
    broker = EventBroker()

    broker.publish(_envelope("e1"))

    assert broker.subscribe().empty()


def test_full_subscriber_queue_drops_oldest_event():
    broker = EventBroker()
    subscriber = broker.subscribe(maxsize=2)
    for event_id in ("e1", "e2", "e3"):
        broker.publish(_envelope(event_id))

    assert [subscriber.get_nowait().id for _ in range(2)] == ["e2", "e3"]

    broker.unsubscribe(subscriber)
    broker.publish(_envelope("e4"))
    assert subscriber.empty()
