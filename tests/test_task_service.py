"""Task service: lifecycle operations on top of a real store (both backends)."""

import asyncio

import pytest

from wolmgr.core.config import config
from wolmgr.core.errors import (
    InvalidArgumentError,
    InvalidTransitionError,
    StoreError,
    TaskNotFoundError,
)
from wolmgr.core.lifecycle import TaskStatus
from wolmgr.services import task_service


@pytest.mark.asyncio
async def test_create_task_normalizes_mac_and_starts_pending(store):
    task = await task_service.create_task(store, "aa-bb-cc-dd-ee-ff")

    assert task.mac_address == "AA:BB:CC:DD:EE:FF"
    assert task.status == TaskStatus.PENDING
    assert task.attempts == 0
    assert task.created_at == task.updated_at
    assert store.get_task(task.id) == task


@pytest.mark.asyncio
async def test_create_task_gives_distinct_ids_for_same_mac(store):
    first = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    second = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    assert first.id != second.id
    assert len(store.list_tasks()) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("mac", (None, "", "   "))
async def test_create_task_requires_mac(store, mac):
    with pytest.raises(InvalidArgumentError, match="macAddress is required"):
        await task_service.create_task(store, mac)
    assert store.list_tasks() == []


@pytest.mark.asyncio
async def test_create_task_rejects_malformed_mac(store):
    with pytest.raises(InvalidArgumentError):
        await task_service.create_task(store, "not-a-mac")
    assert store.list_tasks() == []


@pytest.mark.asyncio
async def test_claim_then_reclaim_returns_nothing(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    claimed = await task_service.claim_pending(store)
    assert [t.id for t in claimed] == [task.id]
    assert claimed[0].status == TaskStatus.PROCESSING
    assert claimed[0].attempts == 1

    assert await task_service.claim_pending(store) == []


@pytest.mark.asyncio
async def test_claim_limit_is_clamped_to_maximum(store, monkeypatch):
    monkeypatch.setattr(config, "CLAIM_LIMIT_MAX", 2)
    for _ in range(4):
        await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    assert len(await task_service.claim_pending(store, limit=100)) == 2


@pytest.mark.asyncio
async def test_claim_uses_default_limit(store, monkeypatch):
    monkeypatch.setattr(config, "CLAIM_LIMIT", 3)
    for _ in range(5):
        await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    assert len(await task_service.claim_pending(store)) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", (0, -1))
async def test_claim_rejects_non_positive_limit(store, limit):
    with pytest.raises(InvalidArgumentError):
        await task_service.claim_pending(store, limit=limit)


@pytest.mark.asyncio
async def test_list_pending_matches_what_claim_takes(store):
    for _ in range(3):
        await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    pending = await task_service.list_pending(store, limit=2)
    claimed = await task_service.claim_pending(store, limit=2)

    assert [t.id for t in pending] == [t.id for t in claimed]


@pytest.mark.asyncio
async def test_success_is_terminal_for_explicit_updates(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    await task_service.claim_pending(store)

    done = await task_service.apply_status(store, task.id, "success")
    assert done.status == TaskStatus.SUCCESS

    late = await task_service.apply_status(store, task.id, "failed")
    assert late.status == TaskStatus.SUCCESS
    assert late.updated_at == done.updated_at
    assert store.get_task(task.id).status == TaskStatus.SUCCESS


@pytest.mark.asyncio
async def test_update_cannot_return_to_pending(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    await task_service.claim_pending(store)

    with pytest.raises(InvalidTransitionError):
        await task_service.apply_status(store, task.id, "pending")

    stored = store.get_task(task.id)
    assert stored.status == TaskStatus.PROCESSING
    assert stored.attempts == 1


@pytest.mark.asyncio
async def test_update_with_unknown_status_leaves_task_untouched(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    with pytest.raises(InvalidArgumentError):
        await task_service.apply_status(store, task.id, "exploded")

    assert store.get_task(task.id) == task


@pytest.mark.asyncio
async def test_update_unknown_task_is_not_found(store):
    with pytest.raises(TaskNotFoundError):
        await task_service.apply_status(store, "does-not-exist", "success")


@pytest.mark.asyncio
@pytest.mark.parametrize("task_id,status", ((None, "success"), ("x", None), ("", "failed"), ("x", "")))
async def test_update_requires_id_and_status(store, task_id, status):
    with pytest.raises(InvalidArgumentError, match="id and status are required"):
        await task_service.apply_status(store, task_id, status)


@pytest.mark.asyncio
async def test_update_to_same_status_does_not_touch_record(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    claimed = (await task_service.claim_pending(store))[0]

    again = await task_service.apply_status(store, task.id, "processing")

    assert again.updated_at == claimed.updated_at
    assert again.attempts == 1


@pytest.mark.asyncio
async def test_manual_retry_to_processing_counts_an_attempt(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    await task_service.claim_pending(store)
    await task_service.apply_status(store, task.id, "failed")

    retried = await task_service.apply_status(store, task.id, "processing")

    assert retried.status == TaskStatus.PROCESSING
    assert retried.attempts == 2


@pytest.mark.asyncio
async def test_notify_by_id(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    notified = await task_service.apply_notify(store, task_id=task.id)

    assert notified.status == TaskStatus.SUCCESS
    assert notified.attempts == 0


@pytest.mark.asyncio
async def test_notify_by_mac_resolves_most_recent_task(store):
    older = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    newer = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    notified = await task_service.apply_notify(store, mac_address="aa-bb-cc-dd-ee-ff")

    assert notified.id == newer.id
    assert store.get_task(older.id).status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_notify_falls_back_to_mac_when_id_is_unknown(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    notified = await task_service.apply_notify(
        store, task_id="unknown-id", mac_address="AA:BB:CC:DD:EE:FF"
    )

    assert notified.id == task.id
    assert notified.status == TaskStatus.SUCCESS


@pytest.mark.asyncio
async def test_notify_by_id_ignores_unusable_mac(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    notified = await task_service.apply_notify(store, task_id=task.id, mac_address="not-a-mac")

    assert notified.id == task.id
    assert notified.status == TaskStatus.SUCCESS


@pytest.mark.asyncio
async def test_notify_with_unknown_id_still_validates_mac(store):
    await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    with pytest.raises(InvalidArgumentError):
        await task_service.apply_notify(store, task_id="unknown-id", mac_address="not-a-mac")


@pytest.mark.asyncio
async def test_notify_is_idempotent(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    first = await task_service.apply_notify(store, task_id=task.id)
    second = await task_service.apply_notify(store, task_id=task.id)

    assert second.status == TaskStatus.SUCCESS
    assert second.updated_at == first.updated_at


@pytest.mark.asyncio
async def test_notify_requires_an_identifier(store):
    with pytest.raises(InvalidArgumentError):
        await task_service.apply_notify(store)


@pytest.mark.asyncio
async def test_notify_rejects_malformed_mac(store):
    with pytest.raises(InvalidArgumentError):
        await task_service.apply_notify(store, mac_address="zz:zz")


@pytest.mark.asyncio
async def test_notify_without_match_is_not_found(store):
    await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    with pytest.raises(TaskNotFoundError):
        await task_service.apply_notify(store, task_id="nope")
    with pytest.raises(TaskNotFoundError):
        await task_service.apply_notify(store, mac_address="11:22:33:44:55:66")


@pytest.mark.asyncio
async def test_end_to_end_failure_retry_and_notify(store):
    task = await task_service.create_task(store, "aa:bb:cc:dd:ee:ff")

    first = await task_service.claim_pending(store)
    assert [(t.id, t.attempts) for t in first] == [(task.id, 1)]

    failed = await task_service.apply_status(store, task.id, "failed")
    assert failed.status == TaskStatus.FAILED

    second = await task_service.claim_pending(store)
    assert [(t.id, t.attempts) for t in second] == [(task.id, 2)]

    done = await task_service.apply_notify(store, mac_address="AA:BB:CC:DD:EE:FF")
    assert done.status == TaskStatus.SUCCESS
    assert done.attempts == 2


@pytest.mark.asyncio
async def test_failed_tasks_stop_being_claimed_at_attempt_cap(store, monkeypatch):
    monkeypatch.setattr(config, "CLAIM_MAX_ATTEMPTS", 2)
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")

    for _ in range(2):
        assert len(await task_service.claim_pending(store)) == 1
        await task_service.apply_status(store, task.id, "failed")

    assert await task_service.claim_pending(store) == []
    assert await task_service.list_pending(store) == []
    assert store.get_task(task.id).attempts == 2


@pytest.mark.asyncio
async def test_concurrent_claims_never_share_a_task(store):
    ids = {(await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")).id for _ in range(20)}

    batches = await asyncio.gather(*(task_service.claim_pending(store, limit=3) for _ in range(10)))

    claimed = [task.id for batch in batches for task in batch]
    assert len(claimed) == len(set(claimed))
    assert set(claimed) <= ids
    assert all(task.attempts == 1 for batch in batches for task in batch)


@pytest.mark.asyncio
async def test_racing_notify_and_failed_update_end_in_success(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    await task_service.claim_pending(store)

    await asyncio.gather(
        task_service.apply_notify(store, task_id=task.id),
        task_service.apply_status(store, task.id, "failed"),
    )

    assert store.get_task(task.id).status == TaskStatus.SUCCESS


@pytest.mark.asyncio
async def test_lost_compare_and_set_is_re_evaluated(store, monkeypatch):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    await task_service.claim_pending(store)

    real_cas = store.compare_and_set
    calls = []

    def cas_after_concurrent_notify(*args, **kwargs):
        if not calls:
            # A notify lands between our read and our write
            real_cas(task.id, TaskStatus.PROCESSING, TaskStatus.SUCCESS, 0, 1)
        calls.append(args)
        return real_cas(*args, **kwargs)

    monkeypatch.setattr(store, "compare_and_set", cas_after_concurrent_notify)

    result = await task_service.apply_status(store, task.id, "failed")

    assert result.status == TaskStatus.SUCCESS
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_endless_contention_is_reported_as_store_error(store, monkeypatch):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    monkeypatch.setattr(store, "compare_and_set", lambda *args, **kwargs: None)

    with pytest.raises(StoreError):
        await task_service.apply_status(store, task.id, "failed")


@pytest.mark.asyncio
async def test_list_tasks_scoped_by_owner(store):
    mine = await task_service.create_task(store, "AA:BB:CC:DD:EE:01", owner_id="alice")
    await task_service.create_task(store, "AA:BB:CC:DD:EE:02", owner_id="bob")
    await task_service.create_task(store, "AA:BB:CC:DD:EE:03")

    assert [t.id for t in await task_service.list_tasks(store, owner_id="alice")] == [mine.id]
    assert len(await task_service.list_tasks(store)) == 3
    unowned = await task_service.list_tasks(store, unowned_only=True)
    assert [t.owner_id for t in unowned] == [None]


@pytest.mark.asyncio
async def test_fail_stale_processing_makes_tasks_claimable_again(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    claimed = (await task_service.claim_pending(store))[0]

    assert await task_service.fail_stale_processing(store, 600, now=claimed.updated_at + 1000) == []

    failed = await task_service.fail_stale_processing(
        store, 600, now=claimed.updated_at + 601_000
    )
    assert [t.id for t in failed] == [task.id]
    assert failed[0].status == TaskStatus.FAILED

    reclaimed = await task_service.claim_pending(store)
    assert [(t.id, t.attempts) for t in reclaimed] == [(task.id, 2)]


@pytest.mark.asyncio
async def test_fail_stale_processing_spares_a_claim_made_after_listing(store, monkeypatch):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    first = (await task_service.claim_pending(store))[0]

    real_list = store.list_stale_processing

    def list_then_reclaim(updated_before):
        stale = real_list(updated_before)
        # The first agent reports failure and a second agent claims the task
        # before the timeout write lands
        store.compare_and_set(
            task.id, TaskStatus.PROCESSING, TaskStatus.FAILED, 0, first.updated_at + 1
        )
        store.claim(10, config.CLAIM_MAX_ATTEMPTS, first.updated_at + 2)
        return stale

    monkeypatch.setattr(store, "list_stale_processing", list_then_reclaim)

    failed = await task_service.fail_stale_processing(
        store, 600, now=first.updated_at + 601_000
    )

    assert failed == []
    current = store.get_task(task.id)
    assert (current.status, current.attempts) == (TaskStatus.PROCESSING, 2)


@pytest.mark.asyncio
async def test_fail_stale_processing_never_touches_success(store):
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    await task_service.claim_pending(store)
    await task_service.apply_notify(store, task_id=task.id)

    assert await task_service.fail_stale_processing(store, 0, now=10**15) == []
    assert store.get_task(task.id).status == TaskStatus.SUCCESS


@pytest.mark.asyncio
async def test_check_processing_timeouts_loop(store, monkeypatch):
    monkeypatch.setattr(config, "PROCESSING_TIMEOUT_SECONDS", 1)
    task = await task_service.create_task(store, "AA:BB:CC:DD:EE:FF")
    store.compare_and_set(task.id, TaskStatus.PENDING, TaskStatus.PROCESSING, 1, now=1)

    stop_event = asyncio.Event()
    monitor = asyncio.create_task(
        task_service.check_processing_timeouts(
            poll_interval=0, stop_event=stop_event, store_getter=lambda: store
        )
    )
    for _ in range(200):
        await asyncio.sleep(0.01)
        if store.get_task(task.id).status == TaskStatus.FAILED:
            break
    stop_event.set()
    await asyncio.wait_for(monitor, timeout=5)

    assert store.get_task(task.id).status == TaskStatus.FAILED


@pytest.mark.asyncio
async def test_check_processing_timeouts_logs_store_errors(monkeypatch):
    monkeypatch.setattr(config, "PROCESSING_TIMEOUT_SECONDS", 1)

    class BrokenStore:
        def list_stale_processing(self, updated_before):
            raise StoreError("disk gone")

    stop_event = asyncio.Event()
    calls = []

    def getter():
        calls.append(1)
        if len(calls) >= 2:
            stop_event.set()
        return BrokenStore()

    await asyncio.wait_for(
        task_service.check_processing_timeouts(
            poll_interval=0, stop_event=stop_event, store_getter=getter
        ),
        timeout=5,
    )
    assert len(calls) >= 2
