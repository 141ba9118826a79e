"""Retry policy: transient storage errors retried, business errors never."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from taskbuddy.errors import SoldOut
from taskbuddy.ledger.retry import is_transient, retry_on_conflict


def _locked() -> OperationalError:
    return OperationalError("UPDATE child_progress", {}, Exception("database is locked"))


class TestIsTransient:
    def test_storage_conflicts(self):
        assert is_transient(_locked())
        assert is_transient(IntegrityError("INSERT", {}, Exception("duplicate sequence")))

    def test_business_errors(self):
        assert not is_transient(SoldOut())
        assert not is_transient(ValueError("nope"))


class TestRetryOnConflict:
    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        calls = []

        async def flaky() -> str:
            calls.append(1)
            if len(calls) < 3:
                raise _locked()
            return "ok"

        assert await retry_on_conflict(flaky, attempts=3, base_delay=0) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        calls = []

        async def always_locked() -> None:
            calls.append(1)
            raise _locked()

        with pytest.raises(OperationalError):
            await retry_on_conflict(always_locked, attempts=2, base_delay=0)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_business_rejection_not_retried(self):
        calls = []

        async def sold_out() -> None:
            calls.append(1)
            raise SoldOut()

        with pytest.raises(SoldOut):
            await retry_on_conflict(sold_out, attempts=5, base_delay=0)
        assert len(calls) == 1
