"""Tests for rate limiting, robots.txt handling and call budgets."""

import httpx
import pytest

from grantmatch.core.exceptions import QuotaExhaustedException, RobotsDisallowedException
from grantmatch.services.budget import CallBudget
from grantmatch.services.politeness import RateLimiter, RobotsPolicy, SourceLimits


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_time():
    return FakeTime()


class TestRateLimiter:
    """Tests for the per-source token bucket."""

    @pytest.mark.asyncio
    async def test_first_request_is_immediate(self, fake_time):
        limiter = RateLimiter(SourceLimits(10, 1.0, 1.0), clock=fake_time.clock, sleep=fake_time.sleep)

        assert await limiter.acquire("KEIT") == 0.0

    @pytest.mark.asyncio
    async def test_min_delay_between_requests(self, fake_time):
        limiter = RateLimiter(SourceLimits(10, 5.0, 5.0), clock=fake_time.clock, sleep=fake_time.sleep)

        await limiter.acquire("KEIT")
        waited = await limiter.acquire("KEIT")

        assert waited == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_bucket_exhaustion_waits_for_refill(self, fake_time):
        """Test that the third request within a 2/minute budget waits for a token."""
        limiter = RateLimiter(SourceLimits(2, 1.0, 1.0), clock=fake_time.clock, sleep=fake_time.sleep)

        await limiter.acquire("KEIT")
        await limiter.acquire("KEIT")
        waited = await limiter.acquire("KEIT")

        assert waited > 20.0

    @pytest.mark.asyncio
    async def test_sources_are_independent(self, fake_time):
        limiter = RateLimiter(SourceLimits(1, 5.0, 5.0), clock=fake_time.clock, sleep=fake_time.sleep)

        await limiter.acquire("KEIT")
        assert await limiter.acquire("NTIS") == 0.0

    @pytest.mark.asyncio
    async def test_configure_overrides_defaults(self, fake_time):
        limiter = RateLimiter(SourceLimits(10, 5.0, 5.0), clock=fake_time.clock, sleep=fake_time.sleep)
        limiter.configure("KEIT", SourceLimits(10, 0.0, 0.0))

        await limiter.acquire("KEIT")
        assert await limiter.acquire("KEIT") == 0.0


def robots_client(body: str | None, status: int = 200) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/robots.txt" and body is not None:
            return httpx.Response(status, text=body)
        return httpx.Response(404)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestRobotsPolicy:
    """Tests for robots.txt enforcement."""

    @pytest.mark.asyncio
    async def test_disallowed_path_raises(self):
        client = robots_client("User-agent: *\nDisallow: /private\nCrawl-delay: 7")
        policy = RobotsPolicy(client, "GrantMatchBot/1.0")

        with pytest.raises(RobotsDisallowedException):
            await policy.check("https://agency.example/private/list", "KEIT")
        await policy.check("https://agency.example/public/list", "KEIT")
        assert await policy.crawl_delay("https://agency.example/") == 7.0

    @pytest.mark.asyncio
    async def test_missing_robots_allows_all(self):
        policy = RobotsPolicy(robots_client(None), "GrantMatchBot/1.0")

        await policy.check("https://agency.example/anything")

    @pytest.mark.asyncio
    async def test_forbidden_robots_disallows_all(self):
        policy = RobotsPolicy(robots_client("", status=403), "GrantMatchBot/1.0")

        with pytest.raises(RobotsDisallowedException):
            await policy.check("https://agency.example/list")

    @pytest.mark.asyncio
    async def test_disabled_policy_skips_check(self):
        client = robots_client("User-agent: *\nDisallow: /")
        policy = RobotsPolicy(client, "GrantMatchBot/1.0", enabled=False)

        await policy.check("https://agency.example/list")


class TestCallBudget:
    """Tests for per-minute service budgets."""

    def test_exhaustion_raises_with_retry_time(self):
        now = [0.0]
        budget = CallBudget("AzureOpenAI", 2, clock=lambda: now[0])

        budget.acquire()
        budget.acquire()
        with pytest.raises(QuotaExhaustedException) as exc_info:
            budget.acquire()

        assert exc_info.value.retry_after is not None
        assert budget.remaining == 0

    def test_window_slides(self):
        now = [0.0]
        budget = CallBudget("AzureOpenAI", 1, clock=lambda: now[0])

        budget.acquire()
        now[0] = 61.0
        budget.acquire()
        assert budget.remaining == 0
