"""Event bus, event log, buffered sink and saga tests."""

import pytest

from linkdrop.events import (
    EventBus,
    EventLog,
    EventSink,
    Paused,
    Saga,
    SagaState,
    Transfer,
    Withdrawn,
    canonical_json_bytes,
)


class TestEvent:

    def test_event_type_and_dict(self):
        event = Withdrawn(link_key_address="0xabc", receiver_address="0xdef")
        data = event.to_dict()
        assert data["event_type"] == "Withdrawn"
        assert data["link_key_address"] == "0xabc"

    def test_digest_is_stable(self):
        event = Paused(account="0x1")
        assert event.digest() == event.digest()

    def test_canonical_json_rejects_floats(self):
        with pytest.raises(ValueError, match="Float"):
            canonical_json_bytes({"amount": 1.5})

    def test_canonical_json_sorts_keys(self):
        assert canonical_json_bytes({"b": 1, "a": 2}) == b'{"a":2,"b":1}'


class TestEventBus:

    def test_subscribers_receive_matching_events(self):
        bus = EventBus()
        seen = []

        @bus.subscribe(Withdrawn)
        def on_withdrawn(event):
            seen.append(event)

        bus.publish(Paused(account="0x1"))
        bus.publish(Withdrawn(link_key_address="0x2"))
        assert [e.event_type for e in seen] == ["Withdrawn"]

    def test_priority_order(self):
        bus = EventBus()
        order = []
        bus.subscribe(priority=1)(lambda e: order.append("low"))
        bus.subscribe(priority=10)(lambda e: order.append("high"))
        bus.publish(Paused())
        assert order == ["high", "low"]

    def test_failing_handler_is_reported_not_raised(self):
        errors = []
        bus = EventBus(on_error=errors.append)

        @bus.subscribe(Paused)
        def broken(event):
            raise RuntimeError("boom")

        bus.publish(Paused())
        assert len(errors) == 1
        assert bus.metrics["error_count"] == 1

    def test_unsubscribe(self):
        bus = EventBus()
        handler = bus.subscribe(Paused)(lambda e: None)
        assert bus.unsubscribe(handler)
        assert bus.metrics["handler_count"] == 0


class TestEventSink:

    def test_emit_records_and_publishes(self):
        bus = EventBus()
        seen = []
        bus.subscribe()(seen.append)
        sink = EventSink(EventLog(), bus)

        sink.emit(Paused(account="0x1"))
        assert len(sink.log) == 1
        assert len(seen) == 1
        assert sink.log.read_all()[0].event.correlation_id

    def test_buffer_commits_on_success(self):
        sink = EventSink()
        with sink.buffer():
            sink.emit(Transfer(amount=1))
            assert len(sink.log) == 0
        assert len(sink.log) == 1

    def test_buffer_drops_on_error(self):
        sink = EventSink()
        with pytest.raises(RuntimeError):
            with sink.buffer():
                sink.emit(Transfer(amount=1))
                raise RuntimeError("rollback")
        assert len(sink.log) == 0

    def test_nested_buffer_defers_to_outer(self):
        sink = EventSink()
        with pytest.raises(RuntimeError):
            with sink.buffer():
                with sink.buffer():
                    sink.emit(Transfer(amount=1))
                raise RuntimeError("outer fails")
        assert len(sink.log) == 0


class TestSaga:

    def test_all_steps_complete(self):
        saga = Saga("ok")
        saga.add_step("a", lambda: 1).add_step("b", lambda: 2)
        assert saga.execute() == [1, 2]
        assert saga.state == SagaState.COMPLETED

    def test_failure_compensates_in_reverse_and_reraises(self):
        undone = []
        saga = Saga("fail")
        saga.add_step("a", lambda: "ra", undone.append)
        saga.add_step("b", lambda: "rb", undone.append)

        def boom():
            raise KeyError("c failed")

        saga.add_step("c", boom, undone.append)

        with pytest.raises(KeyError):
            saga.execute()
        assert undone == ["rb", "ra"]
        assert saga.state == SagaState.FAILED
        assert saga.completed_steps == ["a", "b"]

    def test_compensation_failure_does_not_mask_error(self):
        saga = Saga("masked")

        def bad_undo(result):
            raise RuntimeError("undo failed")

        def boom():
            raise ValueError("original")

        saga.add_step("a", lambda: None, bad_undo)
        saga.add_step("b", boom)

        with pytest.raises(ValueError, match="original"):
            saga.execute()
        assert saga.compensation_failures == ["a"]
