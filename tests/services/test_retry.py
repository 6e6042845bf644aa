"""Tests for retry with bounded exponential backoff."""

from __future__ import annotations

import pytest

from home_orchestrator.core.errors import BackendInvocationError, TransientBackendError
from home_orchestrator.services.retry import RetryPolicy, call_with_retry

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0)


class Flaky:
    """Callable failing a fixed number of times before succeeding."""

    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self, value: str) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return value


class TestCallWithRetry:
    """Tests for call_with_retry."""

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self) -> None:
        """Test transient errors are retried until success."""
        func = Flaky(2, TransientBackendError("blip"))
        assert await call_with_retry(NO_WAIT, func, "done") == "done"
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_connection_errors_are_transient(self) -> None:
        """Test connection errors are retried."""
        func = Flaky(1, ConnectionResetError("reset"))
        assert await call_with_retry(NO_WAIT, func, "done") == "done"
        assert func.calls == 2

    @pytest.mark.asyncio
    async def test_attempts_are_bounded(self) -> None:
        """Test the last error is raised once attempts are exhausted."""
        func = Flaky(10, TransientBackendError("down"))
        with pytest.raises(TransientBackendError, match="down"):
            await call_with_retry(NO_WAIT, func, "never")
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self) -> None:
        """Test non-transient errors propagate immediately."""
        func = Flaky(1, BackendInvocationError("bad request"))
        with pytest.raises(BackendInvocationError):
            await call_with_retry(NO_WAIT, func, "never")
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_single_attempt_disables_retries(self) -> None:
        """Test max_attempts=1 means no retries."""
        func = Flaky(1, TransientBackendError("blip"))
        with pytest.raises(TransientBackendError):
            await call_with_retry(RetryPolicy(max_attempts=1), func, "never")
        assert func.calls == 1
