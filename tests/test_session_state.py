from chatdispatch.session import SessionStateStore, TenantRegistry
from tests import factories as f
from tests.fakes import FakeClock


def test_chat_log_keeps_most_recent_events_in_order() -> None:
    state = SessionStateStore()
    events = [f.event(f.group_text(f"m{i}")) for i in range(1005)]

    for event in events:
        state.append_message(f.GROUP, event)

    recent = state.recent_messages(f.GROUP)
    assert len(recent) == 1000
    assert recent[0] is events[5]
    assert recent[-1] is events[-1]


def test_chat_log_limit_is_configurable() -> None:
    state = SessionStateStore(chat_log_limit=2)
    for body in ("a", "b", "c"):
        state.append_message(f.GROUP, f.event(f.group_text(body)))

    assert [event.text for event in state.recent_messages(f.GROUP)] == ["b", "c"]


def test_chat_logs_are_per_chat() -> None:
    state = SessionStateStore()
    state.append_message("a@g.us", f.event(f.group_text("x")))

    assert state.recent_messages("b@g.us") == []


def test_find_message_by_id() -> None:
    state = SessionStateStore()
    event = f.event(f.group_text("hello", message_id="KEEP"))
    state.append_message(f.GROUP, event)
    state.append_message(f.GROUP, f.event(f.group_text("other")))

    assert state.find_message(f.GROUP, "KEEP") is event
    assert state.find_message(f.GROUP, "MISSING") is None


def test_pending_request_is_consumed_once() -> None:
    state = SessionStateStore()
    state.set_pending_request(f.PEER)

    assert state.has_pending_request(f.PEER)
    assert state.consume_pending_request(f.PEER) is True
    assert state.consume_pending_request(f.PEER) is False
    assert not state.has_pending_request(f.PEER)


def test_activity_counts_per_sender() -> None:
    state = SessionStateStore()

    state.increment_activity(f.GROUP, "a", "Ana", "M1")
    state.increment_activity(f.GROUP, "b", "Bia", "M2")
    count = state.increment_activity(f.GROUP, "a", "Ana B", "M3")

    assert count == 2
    stats = state.activity.stats(f.GROUP)
    assert [(stat.sender_id, stat.count) for stat in stats] == [("a", 2), ("b", 1)]
    assert stats[0].display_name == "Ana B"
    assert stats[0].last_event_id == "M3"


def test_tenant_registry_creates_once_and_touches() -> None:
    clock = FakeClock(start=100.0)
    registry = TenantRegistry(clock=clock)

    first = registry.ensure("t1", "auth-1")
    clock.advance(5)
    again = registry.ensure("t1", None)
    registry.touch("t1")

    assert again is first
    assert first.first_seen == 100.0
    assert first.last_active == 105.0
    assert first.auth_id == "auth-1"


def test_tenant_registry_updates_auth_id() -> None:
    registry = TenantRegistry()
    registry.ensure("t1", "old")
    registry.ensure("t1", "new")

    tenant = registry.get("t1")
    assert tenant is not None
    assert tenant.auth_id == "new"
    assert registry.get("t2") is None
