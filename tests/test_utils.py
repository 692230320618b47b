"""
PURPOSE: Tests for the retry decorator and time helpers.
"""

from datetime import datetime, timezone

import pytest

from shared_event_bus.utils.decorators import retry
from shared_event_bus.utils.time_utils import get_utc_now, to_epoch_millis


class TestRetry:
    """Test exponential-backoff retry."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        calls = {"count": 0}

        @retry(max_retries=3, delay=0)
        async def flaky():
            calls["count"] += 1
            if calls["count"] < 3:
                raise ConnectionError("transient")
            return "PONG"

        assert await flaky() == "PONG"
        assert calls["count"] == 3

    @pytest.mark.asyncio
    async def test_reraises_after_max_retries(self):
        calls = {"count": 0}

        @retry(max_retries=2, delay=0)
        async def always_down():
            calls["count"] += 1
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await always_down()
        assert calls["count"] == 3

    @pytest.mark.asyncio
    async def test_unlisted_exception_not_retried(self):
        calls = {"count": 0}

        @retry(max_retries=5, delay=0, exceptions=(ConnectionError,))
        async def bad_input():
            calls["count"] += 1
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await bad_input()
        assert calls["count"] == 1

    @pytest.mark.asyncio
    async def test_zero_retries_calls_once(self):
        calls = {"count": 0}

        @retry(max_retries=0, delay=0)
        async def once():
            calls["count"] += 1
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await once()
        assert calls["count"] == 1


class TestTimeUtils:
    """Test time helpers."""

    def test_get_utc_now_is_aware(self):
        now = get_utc_now()
        assert now.tzinfo is not None
        assert now.utcoffset().total_seconds() == 0

    def test_to_epoch_millis(self):
        assert to_epoch_millis(datetime(1970, 1, 1, tzinfo=timezone.utc)) == 0
        assert to_epoch_millis(datetime(2024, 3, 1, tzinfo=timezone.utc)) == 1709251200000

    def test_naive_datetime_treated_as_utc(self):
        assert to_epoch_millis(datetime(2024, 3, 1)) == 1709251200000
