"""
Tests for the sensitive-operation limiter.
"""

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from pestcontrol.core.errors import register_exception_handlers
from pestcontrol.core.rate_limit import AttemptStore, sensitive_op_limiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def limited_app(*limiters):
    app = FastAPI()
    register_exception_handlers(app)
    for i, limiter in enumerate(limiters):
        app.add_api_route(f"/op{i}", lambda: {"success": True}, dependencies=[Depends(limiter)])
    return app


class TestAttemptStore:

    def test_allows_up_to_max_attempts(self):
        store = AttemptStore(60, timer=FakeClock())
        assert store.hit("k", 3) == (True, 1)
        assert store.hit("k", 3) == (True, 2)
        assert store.hit("k", 3) == (True, 3)
        assert store.hit("k", 3) == (False, 3)
        # refused attempts are not counted
        assert store.hit("k", 3) == (False, 3)

    def test_window_resets(self):
        clock = FakeClock()
        store = AttemptStore(60, timer=clock)
        store.hit("k", 1)
        assert store.hit("k", 1)[0] is False

        clock.advance(61)
        assert store.hit("k", 1) == (True, 1)

    def test_keys_are_independent(self):
        store = AttemptStore(60, timer=FakeClock())
        store.hit("a", 1)
        assert store.hit("a", 1)[0] is False
        assert store.hit("b", 1) == (True, 1)

    def test_reset(self):
        store = AttemptStore(60, timer=FakeClock())
        store.hit("a", 1)
        store.hit("b", 1)

        store.reset("a")
        assert store.hit("a", 1) == (True, 1)
        assert store.hit("b", 1)[0] is False

        store.reset()
        assert store.hit("b", 1) == (True, 1)


class TestLimiterDependency:

    def test_429_after_max_attempts(self):
        client = TestClient(limited_app(sensitive_op_limiter(2, 60)))

        assert client.get("/op0").status_code == 200
        assert client.get("/op0").status_code == 200
        response = client.get("/op0")

        assert response.status_code == 429
        assert response.json() == {"success": False, "message": "Too many attempts. Please try again later."}

    def test_each_limiter_owns_its_counters(self):
        client = TestClient(limited_app(sensitive_op_limiter(1, 60), sensitive_op_limiter(1, 60)))

        assert client.get("/op0").status_code == 200
        assert client.get("/op1").status_code == 200
        assert client.get("/op0").status_code == 429

    def test_injected_store_is_shared(self):
        store = AttemptStore(60)
        client = TestClient(limited_app(
            sensitive_op_limiter(2, 60, store=store),
            sensitive_op_limiter(2, 60, store=store),
        ))

        assert client.get("/op0").status_code == 200
        assert client.get("/op1").status_code == 200
        assert client.get("/op0").status_code == 429
        assert client.get("/op1").status_code == 429

    def test_limiter_exposes_store(self):
        store = AttemptStore(60)
        assert sensitive_op_limiter(store=store).store is store


class TestLoginLimiter:

    def test_login_is_throttled(self, client: TestClient):
        body = {"email": "nobody@example.com", "password": "whatever"}
        for _ in range(10):
            assert client.post("/api/auth/login", json=body).status_code == 401

        response = client.post("/api/auth/login", json=body)
        assert response.status_code == 429
