import asyncio
import logging

from fleetcache.models import Host, HostStatus
from fleetcache.refreshers import HostContainerRefresher, HostStatusRefresher
from fleetcache.scheduler import RefreshScheduler
from fleetcache.ttl_store import TTLStore


class FakeRepository:
    def __init__(self, hosts, error=None):
        self._hosts = list(hosts)
        self._error = error
        self.calls = 0

    async def list_active_hosts(self):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return list(self._hosts)


class FakeProbe:
    def __init__(self, results=None, gate=None):
        self._results = results or {}
        self._gate = gate
        self.active = 0
        self.max_active = 0

    async def check_connection(self, host_id):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self._gate is not None:
                await self._gate.wait()
            else:
                await asyncio.sleep(0)
            result = self._results.get(host_id, True)
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.active -= 1


class FakeLister:
    async def list_containers(self, host_id, include_all=True):
        return []


class FakeConnection:
    def __init__(self, events):
        self.is_connected = False
        self._events = events

    async def connect(self):
        self._events.append("connect")
        self.is_connected = True


class ExplodingStatusRefresher:
    def __init__(self, bad_host_id, inner, message="unexpected bug"):
        self._bad_host_id = bad_host_id
        self._inner = inner
        self._message = message

    async def refresh(self, host):
        if host.id == self._bad_host_id:
            raise RuntimeError(self._message)
        return await self._inner.refresh(host)


def _host(host_id: int) -> Host:
    return Host(id=host_id, name=f"host-{host_id}")


def _build(repository, probe=None, *, interval=600.0, connection=None, max_concurrency=10):
    status_store = TTLStore(600)
    container_store = TTLStore(600)
    scheduler = RefreshScheduler(
        repository,
        HostStatusRefresher(probe or FakeProbe(), status_store),
        HostContainerRefresher(FakeLister(), container_store),
        interval_seconds=interval,
        connection=connection,
        max_concurrency=max_concurrency,
    )
    return scheduler, status_store, container_store


def test_pass_isolates_failing_probe():
    repository = FakeRepository([_host(1), _host(2)])
    probe = FakeProbe({1: True, 2: ConnectionError("host unreachable")})
    scheduler, status_store, container_store = _build(repository, probe)

    processed = asyncio.run(scheduler.run_pass())

    assert processed == 2
    assert status_store.get(1).value.status == HostStatus.ONLINE
    assert status_store.get(1).value.error is None
    assert status_store.get(2).value.status == HostStatus.OFFLINE
    assert status_store.get(2).value.error == "host unreachable"
    assert container_store.stats().total == 2


def test_pass_with_repository_failure_is_noop():
    repository = FakeRepository([], error=RuntimeError("database is locked"))
    scheduler, status_store, container_store = _build(repository)

    processed = asyncio.run(scheduler.run_pass())

    assert processed == 0
    assert len(status_store) == 0
    assert len(container_store) == 0


def test_pass_connects_persistence_before_listing_hosts():
    events = []

    class RecordingRepository(FakeRepository):
        async def list_active_hosts(self):
            events.append("list")
            return await super().list_active_hosts()

    connection = FakeConnection(events)
    scheduler, _, _ = _build(RecordingRepository([_host(1)]), connection=connection)

    asyncio.run(scheduler.run_pass())
    asyncio.run(scheduler.run_pass())

    assert events == ["connect", "list", "list"]


def test_pass_survives_unexpected_refresher_error():
    repository = FakeRepository([_host(1), _host(2)])
    status_store = TTLStore(600)
    container_store = TTLStore(600)
    inner = HostStatusRefresher(FakeProbe(), status_store)
    scheduler = RefreshScheduler(
        repository,
        ExplodingStatusRefresher(1, inner),
        HostContainerRefresher(FakeLister(), container_store),
        interval_seconds=600,
    )

    processed = asyncio.run(scheduler.run_pass())

    assert processed == 2
    assert status_store.get(1) is None
    assert status_store.get(2).value.status == HostStatus.ONLINE
    # the container side of host 1 still ran
    assert container_store.get(1) is not None


def test_unexpected_refresher_error_is_logged_with_stacktrace(caplog):
    repository = FakeRepository([Host(id=1, name="a"), Host(id=2, name="b")])
    status_store = TTLStore(600)
    inner = HostStatusRefresher(FakeProbe(), status_store)
    scheduler = RefreshScheduler(
        repository,
        ExplodingStatusRefresher(1, inner, message="store write failed: disk full"),
        HostContainerRefresher(FakeLister(), TTLStore(600)),
        interval_seconds=600,
    )

    with caplog.at_level(logging.ERROR, logger="fleetcache.scheduler"):
        processed = asyncio.run(scheduler.run_pass())

    assert processed == 2
    failure_logs = [rec for rec in caplog.records if rec.message.startswith("Unexpected failure refreshing host a (1)")]
    assert len(failure_logs) == 1
    assert failure_logs[0].exc_info is not None
    assert isinstance(failure_logs[0].exc_info[1], RuntimeError)
    assert "store write failed: disk full" in caplog.text


def test_fan_out_is_bounded_by_max_concurrency():
    repository = FakeRepository([_host(i) for i in range(1, 6)])
    probe = FakeProbe()
    scheduler, status_store, _ = _build(repository, probe, max_concurrency=2)

    asyncio.run(scheduler.run_pass())

    assert probe.max_active <= 2
    assert status_store.stats().total == 5


def test_start_twice_runs_one_pass_and_stop_halts_ticks():
    repository = FakeRepository([_host(1)])
    scheduler, _, _ = _build(repository, interval=0.05)

    async def scenario():
        assert scheduler.start() is True
        assert scheduler.start() is False
        assert scheduler.is_running is True
        await scheduler.wait_idle()
        immediate_calls = repository.calls

        await asyncio.sleep(0.13)
        scheduler.stop()
        await scheduler.wait_idle()
        calls_at_stop = repository.calls

        await asyncio.sleep(0.15)
        return immediate_calls, calls_at_stop

    immediate_calls, calls_at_stop = asyncio.run(scenario())

    assert immediate_calls == 1
    assert calls_at_stop >= 2
    assert repository.calls == calls_at_stop
    assert scheduler.is_running is False


def test_stop_lets_in_flight_pass_finish():
    repository = FakeRepository([_host(1)])

    async def scenario():
        gate = asyncio.Event()
        scheduler, status_store, _ = _build(repository, FakeProbe(gate=gate))
        scheduler.start()
        await asyncio.sleep(0.01)
        assert scheduler.pass_in_flight is True

        scheduler.stop()
        gate.set()
        await scheduler.wait_idle()
        return status_store

    status_store = asyncio.run(scenario())

    assert status_store.get(1).value.status == HostStatus.ONLINE


def test_tick_is_skipped_while_pass_in_flight():
    repository = FakeRepository([_host(1)])

    async def scenario():
        gate = asyncio.Event()
        scheduler, _, _ = _build(repository, FakeProbe(gate=gate), interval=0.01)
        scheduler.start()
        await asyncio.sleep(0.08)
        calls_while_blocked = repository.calls
        scheduler.stop()
        gate.set()
        await scheduler.wait_idle()
        return calls_while_blocked

    assert asyncio.run(scenario()) == 1


def test_refresh_now_joins_in_flight_pass():
    repository = FakeRepository([_host(1), _host(2)])

    async def scenario():
        gate = asyncio.Event()
        scheduler, _, _ = _build(repository, FakeProbe(gate=gate))
        scheduler.start()
        await asyncio.sleep(0.01)
        waiter = asyncio.create_task(scheduler.refresh_now())
        await asyncio.sleep(0.01)
        gate.set()
        processed = await waiter
        scheduler.stop()
        return processed

    assert asyncio.run(scenario()) == 2
    assert repository.calls == 1
