import httpx
import pytest

from polyglot_pal import services
from polyglot_pal.client.api import DEFAULT_TIMEOUT
from polyglot_pal.errors import TransientVendorError, VendorHTTPError
from polyglot_pal.retry import RetryPolicy, is_transient, retry_async
from polyglot_pal.settings import settings


class Flaky:
    def __init__(self, failures, error=None, result="ok"):
        self.failures = failures
        self.error = error or httpx.ConnectError("connection refused")
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class Sleeps(list):
    async def __call__(self, delay):
        self.append(delay)


def test_delay_grows_exponentially_and_is_capped():
    policy = RetryPolicy(attempts=6, base_delay=0.5, factor=2.0, max_delay=3.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


@pytest.mark.parametrize(
    "err,expected",
    [
        (httpx.ConnectError("boom"), True),
        (httpx.ReadTimeout("slow"), True),
        (VendorHTTPError(503, "unavailable"), True),
        (VendorHTTPError(429, "slow down"), True),
        (VendorHTTPError(400, "bad request"), False),
        (VendorHTTPError(403, "forbidden"), False),
        (ValueError("nope"), False),
    ],
)
def test_is_transient(err, expected):
    assert is_transient(err) is expected


@pytest.mark.asyncio
async def test_recovers_after_two_failures():
    fn = Flaky(failures=2)
    sleeps = Sleeps()
    result = await retry_async(fn, RetryPolicy(attempts=3, base_delay=0.5), sleep=sleeps)
    assert result == "ok"
    assert fn.calls == 3
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_gives_up_after_attempts():
    fn = Flaky(failures=10, error=VendorHTTPError(503, "overloaded"))
    sleeps = Sleeps()
    with pytest.raises(TransientVendorError) as excinfo:
        await retry_async(fn, RetryPolicy(attempts=3), sleep=sleeps)
    assert fn.calls == 3
    assert len(sleeps) == 2
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.__cause__, VendorHTTPError)
    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_permanent_error_is_not_retried():
    fn = Flaky(failures=10, error=VendorHTTPError(400, "bad key"))
    sleeps = Sleeps()
    with pytest.raises(VendorHTTPError):
        await retry_async(fn, RetryPolicy(attempts=3), sleep=sleeps)
    assert fn.calls == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_custom_transient_predicate():
    fn = Flaky(failures=1, error=KeyError("x"))
    result = await retry_async(fn, RetryPolicy(attempts=2), is_transient=lambda e: isinstance(e, KeyError), sleep=Sleeps())
    assert result == "ok"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.now += delay


@pytest.mark.asyncio
async def test_deadline_stops_retrying_early():
    clock = FakeClock()

    async def slow_failure():
        clock.now += 4.0
        raise httpx.ConnectError("connection refused")

    policy = RetryPolicy(attempts=5, base_delay=1.0, deadline=10.0)
    with pytest.raises(TransientVendorError) as excinfo:
        await retry_async(slow_failure, policy, sleep=clock.sleep, clock=clock)
    # 4s + 1s wait + 4s leaves no room for the 2s wait before a third attempt
    assert excinfo.value.attempts == 2
    assert clock.now < policy.deadline


@pytest.mark.asyncio
async def test_default_policy_fits_client_timeout():
    clock = FakeClock()

    async def timed_out():
        clock.now += settings.vendor_timeout_seconds
        raise httpx.ReadTimeout("vendor did not answer")

    with pytest.raises(TransientVendorError):
        await retry_async(timed_out, services.retry_policy(), sleep=clock.sleep, clock=clock)
    assert clock.now < DEFAULT_TIMEOUT
