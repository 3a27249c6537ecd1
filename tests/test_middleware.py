import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from siweauth.middleware import RateLimiter, RateLimitExceeded, RateLimitMiddleware, RequestLoggingMiddleware


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _app(limiter: RateLimiter) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, rate_limiter=limiter)
    app.add_middleware(RequestLoggingMiddleware)

    @app.post("/auth/nonce")
    async def nonce():
        return {"nonce": "abcdef0123"}

    @app.get("/healthz")
    async def health():
        return {"status": "healthy"}

    return app


@pytest.mark.asyncio
async def test_sliding_window_allows_after_expiry():
    clock = FakeClock()
    limiter = RateLimiter(limits={"default": {"limit": 2, "window": 60}}, clock=clock)

    await limiter.check_limit("k", 2, 60)
    await limiter.check_limit("k", 2, 60)
    with pytest.raises(RateLimitExceeded) as exc_info:
        await limiter.check_limit("k", 2, 60)
    assert exc_info.value.retry_after >= 1

    clock.now += 61
    assert await limiter.check_limit("k", 2, 60) is True


def test_middleware_throttles_auth_paths_only():
    limiter = RateLimiter(limits={"/auth/nonce": {"limit": 2, "window": 60}, "default": {"limit": 100, "window": 60}})
    client = TestClient(_app(limiter))

    statuses = [client.post("/auth/nonce").status_code for _ in range(3)]
    health = [client.get("/healthz").status_code for _ in range(5)]

    assert statuses == [200, 200, 429]
    assert health == [200] * 5


def test_request_id_is_echoed():
    client = TestClient(_app(RateLimiter()))

    response = client.get("/healthz", headers={"x-request-id": "abc123"})

    assert response.headers["x-request-id"] == "abc123"


def test_unknown_auth_paths_share_one_bucket():
    limiter = RateLimiter(limits={"/auth/nonce": {"limit": 50, "window": 60}, "default": {"limit": 1000, "window": 60}})
    client = TestClient(_app(limiter))

    for i in range(500):
        client.post(f"/auth/x{i}")

    assert len(limiter._hits) == 1


@pytest.mark.asyncio
async def test_idle_keys_are_purged():
    clock = FakeClock()
    limiter = RateLimiter(limits={"default": {"limit": 5, "window": 60}}, clock=clock, purge_interval=30)

    await limiter.check_limit("default:10.0.0.1", 5, 60)
    clock.now += 61
    await limiter.check_limit("default:10.0.0.2", 5, 60)

    assert list(limiter._hits) == ["default:10.0.0.2"]
