from collections.abc import AsyncIterator

import pytest

from chatdispatch.dispatcher import InboundEvent
from chatdispatch.model import Category, OperatingMode
from tests import factories as f
from tests.fakes import FakeClock, FakeStore, Harness, MockTaskGroup, make_harness


@pytest.mark.anyio
async def test_group_command_is_archived_counted_and_interpreted() -> None:
    store = FakeStore({(f.TENANT, "prefix"): "!"})
    h = make_harness(store=store)

    outcome = await h.dispatcher.dispatch(
        f.group_text("!ping", sender="5511777", push_name="Ana"),
        tenant_id=f.TENANT,
        auth_id="auth-1",
    )

    assert outcome.ok
    assert outcome.handled is Category.PLAIN
    assert outcome.command_routed is True
    assert [event.text for event in h.state.recent_messages(f.GROUP)] == ["!ping"]
    stats = h.state.activity.stats(f.GROUP)
    assert [(stat.sender_id, stat.count) for stat in stats] == [("5511777", 1)]
    assert len(h.interpreter.calls) == 1
    call = h.interpreter.calls[0]
    assert call["text"] == "!ping"
    assert call["tenant_id"] == f.TENANT
    assert call["auth_id"] == "auth-1"
    assert call["tier"] == "pro"


@pytest.mark.anyio
async def test_direct_plain_message_uses_default_mode_and_caches_it(
    harness: Harness,
) -> None:
    outcome = await harness.dispatcher.dispatch(f.text("hello"), tenant_id=f.TENANT)

    assert outcome.mode is OperatingMode.SELF_ONLY
    assert outcome.handled is Category.PLAIN
    assert outcome.command_routed is False
    assert harness.interpreter.calls == []
    entry = harness.settings.mode.peek(f.TENANT)
    assert entry is not None and entry.value is OperatingMode.SELF_ONLY
    assert len(harness.state.recent_messages(f"{f.PEER}@s.whatsapp.net")) == 1


@pytest.mark.anyio
async def test_default_prefix_triggers_command(harness: Harness) -> None:
    outcome = await harness.dispatcher.dispatch(f.text(".help"), tenant_id=f.TENANT)

    assert outcome.command_routed is True
    assert harness.interpreter.calls[0]["text"] == ".help"


@pytest.mark.anyio
async def test_settings_are_read_once_per_ttl(harness: Harness) -> None:
    for body in ("one", "two", "three"):
        await harness.dispatcher.dispatch(f.text(body), tenant_id=f.TENANT)

    prefix_reads = [g for g in harness.store.gets if g == (f.TENANT, "prefix")]
    assert len(prefix_reads) == 1


@pytest.mark.anyio
async def test_security_block_stops_dispatch(harness: Harness) -> None:
    harness.security.verdict = "block"

    outcome = await harness.dispatcher.dispatch(f.media(), tenant_id=f.TENANT)

    assert outcome.blocked is True
    assert outcome.handled is None
    assert harness.handlers.calls == []
    assert len(harness.metrics.records) == 1


@pytest.mark.anyio
async def test_security_failure_is_treated_as_block(harness: Harness) -> None:
    harness.security.error = RuntimeError("policy service down")

    outcome = await harness.dispatcher.dispatch(f.text(".ping"), tenant_id=f.TENANT)

    assert outcome.blocked is True
    assert harness.interpreter.calls == []


@pytest.mark.anyio
async def test_security_sees_resolved_tier(harness: Harness) -> None:
    harness.tiers.tier_value = "enterprise"

    await harness.dispatcher.dispatch(f.text("hi"), tenant_id=f.TENANT, auth_id="a")

    tenant_id, event, tier = harness.security.checked[0]
    assert tenant_id == f.TENANT
    assert event.text == "hi"
    assert tier == "enterprise"


@pytest.mark.anyio
async def test_tier_failure_falls_back_to_default(harness: Harness) -> None:
    harness.tiers.error = RuntimeError("billing offline")

    outcome = await harness.dispatcher.dispatch(f.text("hi"), tenant_id=f.TENANT)

    assert outcome.tier == "free"
    assert outcome.handled is Category.PLAIN


@pytest.mark.anyio
async def test_malformed_event_is_dropped_and_timed(harness: Harness) -> None:
    outcome = await harness.dispatcher.dispatch(
        {"message": {"conversation": "hi"}}, tenant_id=f.TENANT, auth_id="a"
    )

    assert outcome.dropped is True
    assert not outcome.ok
    assert harness.security.checked == []
    assert harness.state.tenants.get(f.TENANT) is None
    record = harness.metrics.records[0]
    assert record.tenant_id == f.TENANT
    assert record.auth_id == "a"
    assert "processing_time_ms" in record.metrics


@pytest.mark.anyio
async def test_handler_failure_is_isolated(harness: Harness) -> None:
    harness.handlers.fail.add("media")

    failed = await harness.dispatcher.dispatch(f.media(), tenant_id=f.TENANT)
    after = await harness.dispatcher.dispatch(f.poll_vote("1"), tenant_id=f.TENANT)

    assert failed.handled is None
    assert failed.errors and "media" in failed.errors[0]
    assert after.ok
    assert after.handled is Category.POLL_VOTE
    assert harness.handlers.names == ["media", "poll_vote"]
    assert len(harness.metrics.records) == 2


@pytest.mark.anyio
async def test_command_failure_is_recorded(harness: Harness) -> None:
    harness.interpreter.error = ValueError("bad args")

    outcome = await harness.dispatcher.dispatch(f.text(".x"), tenant_id=f.TENANT)

    assert outcome.command_routed is True
    assert outcome.errors
    assert outcome.handled is None


@pytest.mark.anyio
async def test_each_event_reaches_one_handler(harness: Harness) -> None:
    await harness.dispatcher.dispatch(f.poll_vote("2"), tenant_id=f.TENANT)
    await harness.dispatcher.dispatch(f.media("videoMessage"), tenant_id=f.TENANT)

    assert harness.handlers.names == ["poll_vote", "media"]
    assert harness.interpreter.calls == []


@pytest.mark.anyio
async def test_pending_reply_is_consumed_once(harness: Harness) -> None:
    harness.state.set_pending_request(f.PEER)

    first = await harness.dispatcher.dispatch(f.text("yes"), tenant_id=f.TENANT)
    second = await harness.dispatcher.dispatch(f.text("yes"), tenant_id=f.TENANT)

    assert first.handled is Category.PENDING_REPLY
    assert second.handled is Category.PLAIN
    assert harness.handlers.names == ["pending_reply"]
    assert not harness.state.has_pending_request(f.PEER)


@pytest.mark.anyio
async def test_delete_notice_resolves_archived_original(harness: Harness) -> None:
    await harness.dispatcher.dispatch(
        f.group_text("secret", message_id="ORIG"), tenant_id=f.TENANT
    )

    outcome = await harness.dispatcher.dispatch(
        f.revoke("ORIG", chat_id=f.GROUP, participant=f"{f.PEER}@s.whatsapp.net"),
        tenant_id=f.TENANT,
    )

    assert outcome.handled is Category.DELETE_NOTICE
    notice, original = harness.handlers.deleted[0]
    assert notice.revoked_id == "ORIG"
    assert original is not None
    assert original.text == "secret"


@pytest.mark.anyio
async def test_delete_notice_without_original(harness: Harness) -> None:
    await harness.dispatcher.dispatch(f.revoke("GONE"), tenant_id=f.TENANT)

    assert harness.handlers.deleted[0][1] is None


@pytest.mark.anyio
async def test_status_events_are_batched_per_tenant() -> None:
    tg = MockTaskGroup()
    store = FakeStore({(f.TENANT, "status_seen"): True})
    h = make_harness(store=store, task_group=tg)

    for poster in ("5511001", "5511002", "5511003"):
        outcome = await h.dispatcher.dispatch(f.status(poster=poster), tenant_id=f.TENANT)
        assert outcome.handled is Category.STATUS

    assert len(tg.tasks) == 1
    assert h.transport.reactions == []

    await tg.run_all()

    participants = [key.participant for key, _, _ in h.transport.reactions]
    assert participants == [
        "5511001@s.whatsapp.net",
        "5511002@s.whatsapp.net",
        "5511003@s.whatsapp.net",
    ]
    key, emoji, recipients = h.transport.reactions[0]
    assert emoji == "❤️"
    assert recipients == ["5511001@s.whatsapp.net", "551100000000@s.whatsapp.net"]


@pytest.mark.anyio
async def test_own_status_is_ignored() -> None:
    tg = MockTaskGroup()
    h = make_harness(task_group=tg)

    outcome = await h.dispatcher.dispatch(f.status(from_me=True), tenant_id=f.TENANT)

    assert outcome.handled is None
    assert outcome.classification is not None
    assert outcome.classification.discard is True
    assert tg.tasks == []


@pytest.mark.anyio
async def test_status_without_batcher_is_viewed_inline(harness: Harness) -> None:
    harness.store.rows[(f.TENANT, "status_seen")] = "on"

    await harness.dispatcher.dispatch(f.status(), tenant_id=f.TENANT)

    assert len(harness.transport.reactions) == 1


@pytest.mark.anyio
async def test_read_receipt_failure_is_not_fatal(harness: Harness) -> None:
    harness.store.rows[(f.TENANT, "read_receipts")] = True
    harness.transport.fail_read = True

    outcome = await harness.dispatcher.dispatch(f.text(".ping"), tenant_id=f.TENANT)

    assert outcome.ok
    assert outcome.step_failures and outcome.step_failures[0].startswith("read_receipt")
    assert len(harness.interpreter.calls) == 1


@pytest.mark.anyio
async def test_read_receipts_skip_operator_messages(harness: Harness) -> None:
    harness.store.rows[(f.TENANT, "read_receipts")] = True

    await harness.dispatcher.dispatch(f.text("hi"), tenant_id=f.TENANT)
    await harness.dispatcher.dispatch(f.text("mine", from_me=True), tenant_id=f.TENANT)

    assert len(harness.transport.read) == 1


@pytest.mark.anyio
async def test_group_sticker_runs_pipeline_but_stays_unrouted(harness: Harness) -> None:
    harness.store.rows[(f.TENANT, "read_receipts")] = True
    raw = f.raw_event(
        {"stickerMessage": {}},
        chat_id=f.GROUP,
        participant=f"{f.PEER}@s.whatsapp.net",
    )

    outcome = await harness.dispatcher.dispatch(raw, tenant_id=f.TENANT)

    assert outcome.ok
    assert outcome.dropped is False
    assert outcome.handled is None
    assert outcome.command_routed is False
    assert [event.kind for event in harness.state.recent_messages(f.GROUP)] == ["other"]
    assert len(harness.transport.read) == 1
    assert len(harness.security.checked) == 1
    assert harness.handlers.calls == []
    assert harness.interpreter.calls == []


@pytest.mark.anyio
async def test_presence_is_throttled_and_failures_tolerated() -> None:
    clock = FakeClock()
    store = FakeStore({(f.TENANT, "presence"): "composing"})
    h = make_harness(store=store, clock=clock, presence_cooldown_s=5)

    await h.dispatcher.dispatch(f.text("a"), tenant_id=f.TENANT)
    await h.dispatcher.dispatch(f.text("b"), tenant_id=f.TENANT)
    clock.advance(5)
    h.transport.fail_presence = True
    outcome = await h.dispatcher.dispatch(f.text("c"), tenant_id=f.TENANT)

    assert h.transport.presence == [(f"{f.PEER}@s.whatsapp.net", "composing")]
    assert outcome.step_failures and outcome.step_failures[0].startswith("presence")
    assert outcome.handled is Category.PLAIN


@pytest.mark.anyio
async def test_tenant_is_registered_on_first_event(harness: Harness) -> None:
    await harness.dispatcher.dispatch(f.text("hi"), tenant_id=f.TENANT, auth_id="auth")

    tenant = harness.state.tenants.get(f.TENANT)
    assert tenant is not None
    assert tenant.auth_id == "auth"


@pytest.mark.anyio
async def test_metrics_failure_does_not_escape(harness: Harness) -> None:
    class BrokenSink:
        def record(self, tenant_id, auth_id, metrics) -> None:
            raise OSError("disk full")

    harness.dispatcher._metrics = BrokenSink()

    outcome = await harness.dispatcher.dispatch(f.text("hi"), tenant_id=f.TENANT)

    assert outcome.handled is Category.PLAIN


@pytest.mark.anyio
async def test_serve_dispatches_every_event(harness: Harness) -> None:
    async def events() -> AsyncIterator[InboundEvent]:
        for body in ("a", "b", ".c"):
            yield InboundEvent(tenant_id=f.TENANT, auth_id=None, raw=f.text(body))

    await harness.dispatcher.serve(events())

    assert len(harness.metrics.records) == 3
    assert [call["text"] for call in harness.interpreter.calls] == [".c"]
