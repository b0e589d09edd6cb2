"""
Daily usage counters.

QR generations and API calls are counted per UTC day plus lifetime totals.
The daily counters reset lazily: the first read or write on a new UTC date
zeroes them before anything else happens. Rollover and increment travel in
the same compare-and-swap write, so a reset can never drop a concurrent
increment.
"""

import dataclasses
import logging
from datetime import datetime
from typing import Optional

from ..errors import ValidationError
from ..records import Account, Usage
from ..utils.timeutils import utc_date, utcnow

logger = logging.getLogger(__name__)


def needs_rollover(usage: Usage, now: datetime) -> bool:
    if usage.last_reset_date is None:
        return True
    return utc_date(usage.last_reset_date) != utc_date(now)


def _rolled(usage: Usage, now: datetime) -> Usage:
    return dataclasses.replace(usage, qr_generated_today=0, api_calls_today=0, last_reset_date=now)


def _current_usage(usage: Usage, now: datetime) -> Usage:
    return _rolled(usage, now) if needs_rollover(usage, now) else usage


def _check_count(count) -> None:
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise ValidationError("count must be a positive integer", field="count", value=count)


def rollover_if_needed(accounts, account: Account, now: Optional[datetime] = None) -> Account:
    """Zero the daily counters if the stored reset date is not today (UTC)."""
    now = now or utcnow()
    if not needs_rollover(account.usage, now):
        return account

    def _reset(current):
        if not needs_rollover(current.usage, now):
            return current
        return dataclasses.replace(current, usage=_rolled(current.usage, now))

    updated = accounts.update(account.id, _reset)
    logger.debug("Daily usage reset for account %s on %s", account.id, utc_date(now))
    return updated


def increment_qr(accounts, account: Account, count: int = 1, now: Optional[datetime] = None) -> Account:
    _check_count(count)
    now = now or utcnow()

    def _increment(current):
        usage = _current_usage(current.usage, now)
        return dataclasses.replace(current, usage=dataclasses.replace(
            usage,
            qr_generated_today=usage.qr_generated_today + count,
            qr_generated_total=usage.qr_generated_total + count,
        ))

    updated = accounts.update(account.id, _increment)
    logger.debug(
        "Account %s generated %d QR code(s), %d today",
        account.id, count, updated.usage.qr_generated_today,
    )
    return updated


def increment_api_calls(accounts, account: Account, count: int = 1, now: Optional[datetime] = None) -> Account:
    _check_count(count)
    now = now or utcnow()

    def _increment(current):
        usage = _current_usage(current.usage, now)
        return dataclasses.replace(current, usage=dataclasses.replace(
            usage,
            api_calls_today=usage.api_calls_today + count,
            api_calls_total=usage.api_calls_total + count,
        ))

    return accounts.update(account.id, _increment)
