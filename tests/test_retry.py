import pytest

from educonnect.core.retry import RetryExhausted, with_retry


class Flaky:
    def __init__(self, failures: int, exc: type[Exception] = ConnectionError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"attempt {self.calls} failed")
        return "ok"


async def test_returns_first_success():
    op = Flaky(failures=2)
    assert await with_retry(op, max_attempts=3, backoff=0) == "ok"
    assert op.calls == 3


async def test_exhaustion_reports_last_error():
    op = Flaky(failures=5)
    with pytest.raises(RetryExhausted) as excinfo:
        await with_retry(op, max_attempts=3, backoff=0, label="identity_write")

    assert op.calls == 3
    assert excinfo.value.attempts == 3
    assert excinfo.value.label == "identity_write"
    assert isinstance(excinfo.value.last_error, ConnectionError)


async def test_non_retryable_error_propagates_immediately():
    op = Flaky(failures=1, exc=KeyError)
    with pytest.raises(KeyError):
        await with_retry(op, max_attempts=3, backoff=0, retry_on=(ConnectionError,))
    assert op.calls == 1


async def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        await with_retry(Flaky(failures=0), max_attempts=0)
