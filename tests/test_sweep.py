"""
Tests for the quotation cleanup sweep and its scheduling.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import MagicMock, Mock

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from database import StoreUnavailable, get_db
from sweep import QuotationSweep

T0 = datetime(2026, 3, 1, 9, 30, 0)


@pytest.fixture
def sweep(mongo_db):
    return QuotationSweep(db_provider=get_db, retention=timedelta(days=30))


class TestRunOnce:
    def test_deletes_only_expired_quotation_customers(self, sweep, mongo_db, make_customer):
        now = datetime(2026, 6, 1, 12, 0, 0)
        old = make_customer(created_at=now - timedelta(days=31), email="old@lebo-decor.co.za")
        recent = make_customer(created_at=now - timedelta(days=29), email="recent@lebo-decor.co.za")
        confirmed = make_customer(
            status="confirmed", created_at=now - timedelta(days=90), email="confirmed@lebo-decor.co.za"
        )

        assert sweep.run_once(now=now) == 1

        remaining = {doc["_id"] for doc in mongo_db["customer"].find()}
        assert old["_id"] not in remaining
        assert recent["_id"] in remaining
        assert confirmed["_id"] in remaining

    def test_just_past_the_window(self, sweep, mongo_db, make_customer):
        customer = make_customer(created_at=T0)

        assert sweep.run_once(now=T0 + timedelta(days=29)) == 0
        assert mongo_db["customer"].find_one({"_id": customer["_id"]}) is not None

        assert sweep.run_once(now=T0 + timedelta(days=30, milliseconds=1)) == 1
        assert mongo_db["customer"].find_one({"_id": customer["_id"]}) is None

    def test_nothing_to_delete(self, sweep, mongo_db):
        assert sweep.run_once(now=T0) == 0
        assert mongo_db["customer"].count_documents({}) == 0

    def test_cutoff(self, sweep):
        assert sweep.cutoff(T0) == T0 - timedelta(days=30)

    def test_unconfigured_store_is_logged_not_raised(self):
        def provider():
            raise StoreUnavailable("Database not configured")

        assert QuotationSweep(db_provider=provider).run_once(now=T0) == 0

    def test_store_failure_is_logged_not_raised(self):
        db = MagicMock()
        db["customer"].delete_many.side_effect = ServerSelectionTimeoutError("no servers")

        assert QuotationSweep(db_provider=lambda: db).run_once(now=T0) == 0


class TestScheduling:
    @pytest.mark.asyncio
    async def test_runs_after_startup_delay_then_on_interval(self):
        sweep = QuotationSweep(db_provider=MagicMock(), interval_seconds=0.01, startup_delay_seconds=0.05)
        sweep.run_once = Mock(return_value=0)

        sweep.start()
        assert sweep.running
        await asyncio.sleep(0.02)
        assert sweep.run_once.call_count == 0

        await asyncio.sleep(0.2)
        assert sweep.run_once.call_count >= 2

        await sweep.stop()
        assert not sweep.running

    @pytest.mark.asyncio
    async def test_keeps_running_after_unexpected_error(self):
        sweep = QuotationSweep(db_provider=MagicMock(), interval_seconds=0.01, startup_delay_seconds=0)
        sweep.run_once = Mock(side_effect=RuntimeError("cannot encode object"))

        sweep.start()
        await asyncio.sleep(0.1)

        assert sweep.run_once.call_count >= 2
        assert sweep.running

        await sweep.stop()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        sweep = QuotationSweep(db_provider=MagicMock(), interval_seconds=3600, startup_delay_seconds=3600)

        sweep.start()
        task = sweep._task
        sweep.start()
        assert sweep._task is task

        await sweep.stop()
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        sweep = QuotationSweep(db_provider=MagicMock())
        await sweep.stop()
        assert not sweep.running
