"""
Trade Scheduler Tests
=====================

Eligibility, gas gating, per-cycle bookkeeping, cooperative stop and
loop survival. Trades are stubbed; the executor has its own tests.
"""

import asyncio
import json
from unittest.mock import AsyncMock, Mock, patch

import pytest

from volume_rotator.config import GlobalSettings
from volume_rotator.executor import TradeAction, TradeResult
from volume_rotator.randomness import RandomSource
from volume_rotator.scheduler import BotState, TradeScheduler, eligible_wallets
from volume_rotator.selector import ActiveSetSelector
from volume_rotator.wallet_store import WalletRecord, WalletStore
from volume_rotator.utils import AlreadyRunningError, StorageError

from conftest import GWEI, SleepRecorder

NOW = 100_000.0


def ok(wallet, action=TradeAction.BUY):
    return TradeResult(success=True, wallet_address=wallet.address, action=action, amount=0.2)


def failed(wallet):
    return TradeResult(success=False, wallet_address=wallet.address, action=TradeAction.BUY, error="boom")


@pytest.fixture
def quiet_settings():
    # No spontaneous active-set refresh
    return GlobalSettings(active_set_refresh_probability=0.0)


@pytest.fixture
def store(tmp_path):
    store = WalletStore(tmp_path / "temp_wallets_avax.json")
    store.load(3)
    return store


@pytest.fixture
def selector(store, quiet_settings):
    selector = ActiveSetSelector(RandomSource(seed=5), quiet_settings.active_set_refresh_probability)
    selector.recompute(store.records, 1.0)
    return selector


@pytest.fixture
def executor():
    executor = Mock()
    executor.execute_trade = AsyncMock(side_effect=lambda w: ok(w))
    return executor


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def scheduler(chain, quiet_settings, store, selector, executor, client, sleeper):
    return TradeScheduler(
        chain,
        quiet_settings,
        store,
        selector,
        executor,
        client,
        RandomSource(seed=9),
        sleep=sleeper,
        clock=lambda: NOW,
    )


class TestEligibleWallets:

    def test_elapsed_wallets_only(self):
        records = [
            WalletRecord("0xa", "k1", last_trade_time=0),
            WalletRecord("0xb", "k2", last_trade_time=950),
            WalletRecord("0xc", "k3", last_trade_time=900),
        ]
        active = {"0xa", "0xb", "0xc"}

        result = eligible_wallets(records, active, 1000, lambda: 100)

        assert [w.address for w in result] == ["0xa", "0xc"]

    def test_inactive_wallets_excluded(self):
        records = [WalletRecord("0xa", "k1"), WalletRecord("0xb", "k2")]

        result = eligible_wallets(records, {"0xb"}, 1000, lambda: 0)

        assert [w.address for w in result] == ["0xb"]

    def test_delay_drawn_per_active_wallet(self):
        records = [WalletRecord(f"0x{i}", f"k{i}", last_trade_time=500) for i in range(3)]
        delays = iter([100, 900, 100])

        result = eligible_wallets(records, {r.address for r in records}, 1000, lambda: next(delays))

        assert [w.address for w in result] == ["0x0", "0x2"]

    def test_deterministic_for_same_inputs(self):
        records = [WalletRecord(f"0x{i}", f"k{i}", last_trade_time=i * 100) for i in range(10)]
        active = {r.address for r in records[::2]}

        def run(seed):
            rng = RandomSource(seed)
            return [w.address for w in eligible_wallets(records, active, 1500, lambda: rng.uniform(600, 1200))]

        assert run(3) == run(3)


class TestRunCycle:

    def test_high_gas_skips_cycle(self, scheduler, client, executor, sleeper):
        client.gas_price = 60 * GWEI

        attempted = asyncio.run(scheduler.run_cycle())

        assert attempted == 0
        executor.execute_trade.assert_not_called()
        assert sleeper.durations == [60]
        assert scheduler.stats.gas_skipped_cycles == 1

    def test_high_gas_log_names_the_wait(self, scheduler, client):
        client.gas_price = 60 * GWEI

        with patch("volume_rotator.scheduler.logger") as log:
            asyncio.run(scheduler.run_cycle())

        messages = [c.args[0] for c in log.info.call_args_list]
        assert any("Gas price too high" in m and "retrying in 1m" in m for m in messages)

    def test_gas_at_max_is_acceptable(self, scheduler, client, executor):
        client.gas_price = 50 * GWEI

        assert asyncio.run(scheduler.run_cycle()) == 3

    def test_normal_gas_trades_every_eligible_wallet(self, scheduler, client, executor, store, sleeper):
        client.gas_price = 40 * GWEI

        attempted = asyncio.run(scheduler.run_cycle())

        assert attempted == 3
        traded = [c.args[0] for c in executor.execute_trade.await_args_list]
        assert traded == store.records
        assert all(w.last_trade_time == NOW for w in store.records)

        jitters, check = sleeper.durations[:-1], sleeper.durations[-1]
        assert len(jitters) == 3
        assert all(1.0 <= j <= 3.0 for j in jitters)
        assert check == 30

    def test_cycle_persists_trade_times(self, scheduler, store):
        asyncio.run(scheduler.run_cycle())

        with open(store.path) as f:
            data = json.load(f)
        assert [w["last_trade_time"] for w in data["wallets"]] == [NOW] * 3

    def test_failed_trade_still_advances_time(self, scheduler, executor, store):
        executor.execute_trade.side_effect = lambda w: failed(w)

        asyncio.run(scheduler.run_cycle())

        assert all(w.last_trade_time == NOW for w in store.records)
        assert scheduler.stats.trades_attempted == 3
        assert scheduler.stats.trades_succeeded == 0

    def test_recently_traded_wallets_wait(self, scheduler, executor, store):
        for w in store.records:
            w.last_trade_time = NOW - 100

        assert asyncio.run(scheduler.run_cycle()) == 0
        executor.execute_trade.assert_not_called()

    def test_only_active_wallets_trade(self, scheduler, selector, executor, store):
        selector._active = {store.records[1].address}

        asyncio.run(scheduler.run_cycle())

        traded = [c.args[0].address for c in executor.execute_trade.await_args_list]
        assert traded == [store.records[1].address]
        assert store.records[0].last_trade_time == 0.0

    def test_stats_count_directions(self, scheduler, executor):
        results = iter([TradeAction.BUY, TradeAction.SELL, TradeAction.BUY])
        executor.execute_trade.side_effect = lambda w: ok(w, next(results))

        asyncio.run(scheduler.run_cycle())

        assert scheduler.stats.buys == 2
        assert scheduler.stats.sells == 1
        assert scheduler.stats.cycles == 1


class TestRunLoop:

    def test_stop_mid_cycle_finishes_in_flight_trade_only(self, scheduler, executor, store, sleeper):
        def trade_then_stop(wallet):
            scheduler.stop()
            return ok(wallet)

        executor.execute_trade.side_effect = trade_then_stop

        asyncio.run(scheduler.run())

        assert executor.execute_trade.await_count == 1
        assert store.records[0].last_trade_time == NOW
        assert store.records[1].last_trade_time == 0.0
        assert sleeper.durations == []
        assert scheduler.state == BotState.STOPPED

        # partial cycle is still persisted
        reloaded = WalletStore(store.path).load(3)
        assert reloaded[0].last_trade_time == NOW

    def test_second_run_while_running_is_refused(self, scheduler, executor):
        errors = []

        async def trade(wallet):
            try:
                await scheduler.run()
            except AlreadyRunningError as e:
                errors.append(e)
            scheduler.stop()
            return ok(wallet)

        executor.execute_trade.side_effect = trade

        asyncio.run(scheduler.run())

        assert len(errors) == 1
        assert scheduler.state == BotState.STOPPED

    def test_loop_survives_storage_error(self, scheduler, store, quiet_settings):
        store.persist = Mock(side_effect=StorageError("disk full"))

        def stop_on_retry(seconds):
            if seconds == quiet_settings.retry_delay_seconds:
                scheduler.stop()

        scheduler._sleep_fn = SleepRecorder(on_sleep=stop_on_retry)

        asyncio.run(scheduler.run())

        assert scheduler.stats.failed_cycles == 1
        assert quiet_settings.retry_delay_seconds in scheduler._sleep_fn.durations
        assert scheduler.state == BotState.STOPPED

    def test_loop_survives_gas_read_failure(self, scheduler, client, executor, quiet_settings):
        client.fail_on.add("get_gas_price")
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 2:
                scheduler.stop()

        scheduler._sleep_fn = sleep

        asyncio.run(scheduler.run())

        assert scheduler.stats.failed_cycles == 2
        assert sleeps == [60, 60]
        executor.execute_trade.assert_not_called()

    def test_stop_before_run_returns_without_trading(self, scheduler, executor, sleeper, client):
        scheduler.stop()
        assert scheduler.stop_requested

        asyncio.run(scheduler.run())

        assert scheduler.state == BotState.STOPPED
        assert scheduler.stats.cycles == 0
        executor.execute_trade.assert_not_called()
        assert sleeper.durations == []
        assert client.calls == []

    def test_status(self, scheduler):
        status = scheduler.status()

        assert status["chain"] == "avax"
        assert status["state"] == "idle"
        assert status["running"] is False
        assert status["wallets"] == 3
        assert status["active_wallets"] == 3
        assert status["stats"]["cycles"] == 0

    def test_stop_wakes_default_sleep(self, chain, quiet_settings, store, selector, executor, client):
        scheduler = TradeScheduler(
            chain, quiet_settings, store, selector, executor, client,
            RandomSource(seed=1), clock=lambda: NOW,
        )
        client.gas_price = 60 * GWEI

        async def main():
            task = asyncio.create_task(scheduler.run())
            await asyncio.sleep(0.05)
            assert scheduler.is_running
            scheduler.stop()
            await asyncio.wait_for(task, timeout=5)

        asyncio.run(main())

        assert scheduler.state == BotState.STOPPED
