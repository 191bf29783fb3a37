import asyncio

from metersync.schemas.sync import SerialOwnerBlock
from metersync.services.errors import NetworkError
from metersync.services.serial_reconciler import SERIAL_SYNC_TYPE, SerialReconciler, compute_delta


def test_compute_delta():
    delta = compute_delta({"S1", "S2", "S4"}, {"S2", "S3"})
    assert delta.added == {"S1", "S4"}
    assert delta.removed == {"S3"}
    assert compute_delta({"S1"}, {"S1"}).is_empty


async def test_delta_sync_makes_local_equal_remote(store, directory, reconciler):
    store.replace_available_serials(["S2", "S3", "S9"], full_replace=True)
    directory.set_serials("S1, S2", "S4")

    result = await reconciler.sync()

    assert result.success
    assert not result.is_full_sync
    assert result.saved == 2
    assert result.removed == 2
    assert result.total_available == 3
    assert store.list_available_serials() == {"S1", "S2", "S4"}


async def test_scenario_b_duplicates_and_whitespace(store, directory, reconciler):
    store.replace_available_serials(["S2", "S3"], full_replace=True)
    directory.blocks = [SerialOwnerBlock(owner_id="1", box_id="1", serials_csv="S1, S2,S1")]

    result = await reconciler.sync()

    assert result.success
    assert result.saved == 1
    assert result.removed == 1
    assert store.list_available_serials() == {"S1", "S2"}


async def test_full_sync_twice_is_idempotent(store, directory, reconciler):
    store.replace_available_serials(["OLD"], full_replace=True)
    directory.set_serials("S1,S2,S3")

    first = await reconciler.sync(force=True)
    after_first = store.list_available_serials()
    second = await reconciler.sync(force=True)

    assert first.success and second.success
    assert first.is_full_sync and second.is_full_sync
    assert after_first == {"S1", "S2", "S3"}
    assert store.list_available_serials() == after_first
    assert directory.calls == 2


async def test_full_sync_does_not_reopen_serials_held_by_queued_meters(store, directory, reconciler):
    directory.set_serials("S1,S2")
    await reconciler.sync(force=True)
    store.enqueue_new_meter({"account_id": "A1", "serial_no_new": "S1"})

    result = await reconciler.sync(force=True)

    assert result.is_full_sync
    assert not store.is_serial_available("S1")
    assert store.is_serial_available("S2")


async def test_cooldown_skips_second_sync(store, directory, connectivity, reconciler, clock):
    directory.set_serials("S1")

    first = await reconciler.sync()
    clock.advance(10)
    second = await reconciler.sync()

    assert first.success and not first.skipped
    assert second.success and second.skipped
    assert directory.calls == 1
    assert connectivity.calls == 1

    clock.advance(25)
    third = await reconciler.sync()
    assert not third.skipped
    assert directory.calls == 2


async def test_force_bypasses_cooldown(directory, reconciler):
    directory.set_serials("S1")
    await reconciler.sync()
    result = await reconciler.sync(force=True)
    assert not result.skipped
    assert directory.calls == 2


async def test_offline_returns_no_connection(store, directory, connectivity, reconciler):
    connectivity.connected = False

    result = await reconciler.sync()

    assert not result.success
    assert result.error == "no connection"
    assert result.offline
    assert directory.calls == 0
    assert reconciler.consecutive_failures == 0
    assert store.get_last_sync_timestamp(SERIAL_SYNC_TYPE) == 0


async def test_fetch_failure_keeps_timestamp_and_local_set(store, directory, reconciler):
    store.replace_available_serials(["S1"], full_replace=True)
    directory.error = NetworkError("API request failed with status 502", status=502)

    result = await reconciler.sync()

    assert not result.success
    assert "502" in result.error
    assert store.get_last_sync_timestamp(SERIAL_SYNC_TYPE) == 0
    assert store.list_available_serials() == {"S1"}
    assert reconciler.get_status().consecutive_failures == 1


async def test_empty_remote_set_updates_timestamp(store, directory, reconciler, clock):
    store.replace_available_serials(["S1"], full_replace=True)

    result = await reconciler.sync()

    assert result.success
    assert result.saved == 0
    assert store.get_last_sync_timestamp(SERIAL_SYNC_TYPE) == int(clock() * 1000)
    assert store.list_available_serials() == {"S1"}


async def test_repeated_failures_force_full_sync(store, directory, connectivity, clock):
    reconciler = SerialReconciler(store, directory, connectivity, clock=clock, full_sync_after_failures=2)
    store.replace_available_serials(["STALE"], full_replace=True)
    directory.error = NetworkError("boom")

    await reconciler.sync()
    await reconciler.sync()
    assert reconciler.consecutive_failures == 2

    directory.error = None
    directory.set_serials("S1")
    result = await reconciler.sync()

    assert result.is_full_sync
    assert reconciler.consecutive_failures == 0
    assert reconciler.last_error is None
    assert store.list_available_serials() == {"S1"}


async def test_concurrent_sync_returns_already_syncing(store, connectivity, clock):
    release = asyncio.Event()
    entered = asyncio.Event()

    class SlowDirectory:
        async def fetch_remote_serials(self):
            entered.set()
            await release.wait()
            return [SerialOwnerBlock(serials_csv="S1")]

    reconciler = SerialReconciler(store, SlowDirectory(), connectivity, clock=clock)
    first = asyncio.create_task(reconciler.sync())
    await entered.wait()

    second = await reconciler.sync()
    assert not second.success
    assert second.reason == "already syncing"
    assert reconciler.get_status().is_syncing

    release.set()
    assert (await first).success
    assert not reconciler.is_syncing


async def test_listeners_and_notifier(directory, connectivity, store, clock):
    events = []
    messages = []

    def broken_listener(status, error):
        raise RuntimeError("listener bug")

    reconciler = SerialReconciler(
        store, directory, connectivity, clock=clock,
        notifier=lambda message, is_error: messages.append((message, is_error)),
    )
    listener = lambda status, error: events.append((status, error))
    assert reconciler.add_listener(listener)
    assert not reconciler.add_listener(listener)
    reconciler.add_listener(broken_listener)

    directory.set_serials("S1")
    result = await reconciler.sync(notify=True)
    assert result.success
    assert events == [("started", None), ("succeeded", None)]
    assert messages == [("Synced 1 meter serial numbers", False)]

    assert reconciler.remove_listener(listener)
    assert not reconciler.remove_listener(listener)


def test_is_serial_valid_delegates_to_store(store, reconciler):
    store.replace_available_serials(["S1"], full_replace=True)
    assert reconciler.is_serial_valid("S1")
    assert not reconciler.is_serial_valid("S2")
