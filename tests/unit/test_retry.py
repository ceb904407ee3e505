"""Tests for the retry policy."""

import httpx
import pytest

from tandem.lib.retry import is_transient, with_retry


def status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://test/v1/chat/completions")
    return httpx.HTTPStatusError(
        "error", request=request, response=httpx.Response(code, request=request)
    )


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (status_error(429), True),
        (status_error(503), True),
        (status_error(408), True),
        (status_error(400), False),
        (status_error(401), False),
        (httpx.ConnectError("refused"), True),
        (httpx.ReadTimeout("slow"), True),
        (ValueError("nope"), False),
    ],
)
def test_is_transient(exc: BaseException, expected: bool) -> None:
    assert is_transient(exc) is expected


@pytest.mark.asyncio
async def test_retries_transient_then_succeeds() -> None:
    attempts = 0

    @with_retry(max_attempts=3, min_wait=0, max_wait=0)
    async def flaky() -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise httpx.ConnectError("refused")
        return "ok"

    assert await flaky() == "ok"
    assert attempts == 3


@pytest.mark.asyncio
async def test_reraises_after_last_attempt() -> None:
    attempts = 0

    @with_retry(max_attempts=2, min_wait=0, max_wait=0)
    async def always_down() -> str:
        nonlocal attempts
        attempts += 1
        raise status_error(502)

    with pytest.raises(httpx.HTTPStatusError):
        await always_down()
    assert attempts == 2
