"""
Тесты повторов с экспоненциальным backoff.
"""

import pytest

from drive_ocr.services.retry import RetryPolicy, execute_with_retry, is_transient_error


class FlakyOperation:
    """Падает заданными ошибками, затем возвращает результат."""

    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.parametrize(
    "description, expected",
    [
        ("Ошибка upload (429): rate limit", True),
        ("Ошибка export (500): internal", True),
        ("Ошибка export (502): bad gateway", True),
        ("Ошибка export (503): unavailable", True),
        ("Ошибка export (504): gateway timeout", True),
        ("Ошибка upload: timeout", True),
        ("Read TIMEOUT while waiting", True),
        ("Ошибка export (404): not found", False),
        ("Ошибка upload (403): forbidden", False),
        ("connection refused", False),
    ],
)
def test_is_transient_error(description, expected):
    assert is_transient_error(description) is expected


def test_compute_delay_grows_and_caps():
    policy = RetryPolicy(max_retries=10, backoff_base=1.5, backoff_cap=15.0)

    assert policy.compute_delay(0, 0.0) == 1.0
    assert policy.compute_delay(2, 0.25) == pytest.approx(2.25 + 0.25)
    assert policy.compute_delay(10, 0.5) == 15.5


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 2, 3])
async def test_succeeds_after_transient_failures(failures):
    policy = RetryPolicy(max_retries=3)
    operation = FlakyOperation([RuntimeError("503 busy") for _ in range(failures)])
    sleep = SleepRecorder()

    result = await execute_with_retry(operation, policy, sleep=sleep, jitter=lambda: 0.0)

    assert result == "ok"
    assert operation.calls == failures + 1
    assert sleep.delays == [1.5 ** attempt for attempt in range(failures)]


@pytest.mark.asyncio
async def test_always_transient_exhausts_retries_and_raises_last_error():
    policy = RetryPolicy(max_retries=4)
    operation = FlakyOperation([RuntimeError(f"429 attempt {n}") for n in range(10)])
    sleep = SleepRecorder()

    with pytest.raises(RuntimeError, match="429 attempt 4"):
        await execute_with_retry(operation, policy, sleep=sleep, jitter=lambda: 0.0)

    assert operation.calls == 5
    assert len(sleep.delays) == 4


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried():
    operation = FlakyOperation([RuntimeError("Ошибка export (404): not found")])
    sleep = SleepRecorder()

    with pytest.raises(RuntimeError, match="404"):
        await execute_with_retry(operation, RetryPolicy(), sleep=sleep)

    assert operation.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_zero_retries_runs_once():
    operation = FlakyOperation([RuntimeError("timeout")])

    with pytest.raises(RuntimeError):
        await execute_with_retry(operation, RetryPolicy(max_retries=0), sleep=SleepRecorder())

    assert operation.calls == 1


@pytest.mark.asyncio
async def test_jitter_is_added_to_delay():
    operation = FlakyOperation([RuntimeError("500")])
    sleep = SleepRecorder()

    await execute_with_retry(operation, RetryPolicy(), sleep=sleep, jitter=lambda: 0.75)

    assert sleep.delays == [1.75]
