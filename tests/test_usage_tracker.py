"""
Usage counter tests: daily rollover and increments.
"""

import datetime
import threading

import pytest

from mqrgen.errors import ValidationError
from mqrgen.records import Usage
from mqrgen.repositories.memory import MemoryStore
from mqrgen.services.usage_tracker import (
    increment_api_calls,
    increment_qr,
    needs_rollover,
    rollover_if_needed,
)

UTC = datetime.timezone.utc


class TestRollover:
    """Tests for the lazy UTC-day reset"""

    def test_same_day_is_untouched(self, store, make_account, now):
        account = make_account(qr_today=40, api_today=3)
        result = rollover_if_needed(store.accounts, account, now + datetime.timedelta(hours=5))

        assert result.usage.qr_generated_today == 40
        assert result.version == account.version

    def test_new_utc_day_zeroes_daily_counters(self, store, make_account, now):
        account = make_account(qr_today=40, api_today=3)
        tomorrow = now + datetime.timedelta(days=1)

        result = rollover_if_needed(store.accounts, account, tomorrow)

        assert result.usage.qr_generated_today == 0
        assert result.usage.api_calls_today == 0
        assert result.usage.qr_generated_total == 40
        assert result.usage.last_reset_date == tomorrow

    def test_midnight_boundary_uses_utc_dates(self, store, make_account):
        late = datetime.datetime(2026, 3, 14, 23, 59, 59, tzinfo=UTC)
        early = datetime.datetime(2026, 3, 15, 0, 0, 1, tzinfo=UTC)
        account = make_account(qr_today=7, last_reset=late)

        assert rollover_if_needed(store.accounts, account, early).usage.qr_generated_today == 0

    def test_non_utc_offsets_are_normalised(self, store, make_account):
        # 01:00 on the 15th in +05:30 is still the 14th in UTC
        reset = datetime.datetime(2026, 3, 14, 10, 0, tzinfo=UTC)
        ist = datetime.timezone(datetime.timedelta(hours=5, minutes=30))
        account = make_account(qr_today=7, last_reset=reset)

        result = rollover_if_needed(store.accounts, account, datetime.datetime(2026, 3, 15, 1, 0, tzinfo=ist))

        assert result.usage.qr_generated_today == 7

    def test_missing_reset_date_needs_rollover(self, now):
        assert needs_rollover(Usage(qr_generated_today=5, last_reset_date=None), now)

    def test_stale_snapshot_does_not_reset_twice(self, store, make_account, now):
        account = make_account(qr_today=10, last_reset=now - datetime.timedelta(days=1))
        fresh = rollover_if_needed(store.accounts, account, now)
        increment_qr(store.accounts, fresh, 3, now)

        # ``account`` still says yesterday; the stored copy is already rolled over
        result = rollover_if_needed(store.accounts, account, now)

        assert result.usage.qr_generated_today == 3


class TestIncrements:
    """Tests for QR and API call counters"""

    def test_increment_qr_adds_to_today_and_total(self, store, make_account, now):
        account = make_account(qr_today=5)
        result = increment_qr(store.accounts, account, 3, now)

        assert result.usage.qr_generated_today == 8
        assert result.usage.qr_generated_total == 8

    def test_increment_after_day_change_starts_from_zero(self, store, make_account, now):
        account = make_account(qr_today=99)
        result = increment_qr(store.accounts, account, 2, now + datetime.timedelta(days=1))

        assert result.usage.qr_generated_today == 2
        assert result.usage.qr_generated_total == 101

    def test_increment_api_calls(self, store, make_account, now):
        account = make_account(api_today=4)
        result = increment_api_calls(store.accounts, account, now=now)

        assert result.usage.api_calls_today == 5
        assert result.usage.api_calls_total == 5

    @pytest.mark.parametrize("count", [0, -1, 1.5, True, "2"])
    def test_rejects_bad_counts(self, store, make_account, now, count):
        account = make_account()
        with pytest.raises(ValidationError):
            increment_qr(store.accounts, account, count, now)

    def test_concurrent_increments_are_not_lost(self, make_account, now):
        store = MemoryStore(conflict_retries=200)
        account = make_account(target=store)
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            for _ in range(25):
                increment_qr(store.accounts, account, 1, now)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stored = store.accounts.get(account.id)
        assert stored.usage.qr_generated_today == 200
        assert stored.usage.qr_generated_total == 200
