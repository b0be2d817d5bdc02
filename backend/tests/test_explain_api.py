"""API-level tests for the explanation endpoint and its rate limiting."""
from __future__ import annotations

import json
import time
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from code_explainer.core.config import Settings
from code_explainer.deps import get_explainer_service
from code_explainer.main import create_app
from code_explainer.schemas.explain import CodeFeedback, FurtherReadingArticle, LineSummary
from code_explainer.services import explainer
from code_explainer.services.rate_limit import RateConfig, ServerRateLimiter


class _StubService:
    def __init__(self) -> None:
        self.calls = 0

    async def explain(self, *, code: str, language: str) -> CodeFeedback:
        self.calls += 1
        return CodeFeedback(
            analyzed_language=language,
            summary="Prints hello.",
            context="Scripts.",
            line_by_line=[
                LineSummary(
                    line_start=1,
                    line_end=1,
                    line_text=code,
                    line_explanation="Writes to stdout.",
                )
            ],
            further_reading=[
                FurtherReadingArticle(
                    title="print()", url="https://docs.python.org/3/library/functions.html#print", description="Docs"
                )
            ],
        )


class _FailingService:
    async def explain(self, **_: object) -> CodeFeedback:
        raise RuntimeError("upstream exploded")


@pytest.fixture(name="limiter")
def limiter_fixture(clock) -> ServerRateLimiter:
    return ServerRateLimiter(RateConfig(max_requests=2, window_seconds=60), clock=clock)


@pytest.fixture(name="settings")
def settings_fixture(tmp_path: Path) -> Settings:
    return Settings(
        ark_api_key="test",
        audit_log_store_path=str(tmp_path / "audit.jsonl"),
        rate_limit_sweep_interval_seconds=0,
    )


@pytest.fixture(name="service")
def service_fixture() -> _StubService:
    return _StubService()


@pytest.fixture(name="client")
def client_fixture(settings: Settings, limiter: ServerRateLimiter, service: _StubService):
    app = create_app(settings, rate_limiter=limiter)
    app.dependency_overrides[get_explainer_service] = lambda: service
    with TestClient(app) as client:
        yield client


def test_explain_returns_feedback_with_remaining(client: TestClient) -> None:
    response = client.post(
        "/api/explain",
        json={"code": "print('hi')", "language": "python"},
        headers={"X-Forwarded-For": "203.0.113.5"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["remainingRequests"] == 1
    assert body["originalCode"] == "print('hi')"
    assert body["originalLanguage"] == "python"
    assert body["response"]["lineByLine"][0]["lineExplanation"] == "Writes to stdout."
    assert body["response"]["furtherReading"][0]["title"] == "print()"
    assert response.headers["X-Request-Id"]


def test_explain_rate_limited_per_client(
    client: TestClient, service: _StubService, clock
) -> None:
    headers = {"X-Forwarded-For": "203.0.113.5"}
    payload = {"code": "print('hi')", "language": "python"}

    assert client.post("/api/explain", json=payload, headers=headers).status_code == 200
    assert client.post("/api/explain", json=payload, headers=headers).status_code == 200
    rejected = client.post("/api/explain", json=payload, headers=headers)

    assert rejected.status_code == 429
    assert rejected.json() == {"error": "Rate limit exceeded. Please try again later."}
    assert service.calls == 2

    other = client.post("/api/explain", json=payload, headers={"X-Real-IP": "198.51.100.9"})
    assert other.status_code == 200

    clock.advance(60)
    assert client.post("/api/explain", json=payload, headers=headers).status_code == 200


def test_direct_calls_without_headers_share_fallback_bucket(
    client: TestClient, service: _StubService
) -> None:
    payload = {"code": "x = 1", "language": "python"}

    first = client.post("/api/explain", json=payload)
    second = client.post("/api/explain", json=payload)
    third = client.post("/api/explain", json=payload)

    assert first.json()["remainingRequests"] == 1
    assert second.json()["remainingRequests"] == 0
    assert third.status_code == 429
    assert service.calls == 2


def test_quota_endpoint_does_not_consume(client: TestClient) -> None:
    headers = {"X-Forwarded-For": "203.0.113.8"}

    for _ in range(3):
        response = client.get("/api/explain/quota", headers=headers)
        assert response.status_code == 200
        assert response.json() == {"remainingRequests": 2, "limit": 2, "windowSeconds": 60.0}

    client.post("/api/explain", json={"code": "x", "language": "python"}, headers=headers)
    assert client.get("/api/explain/quota", headers=headers).json()["remainingRequests"] == 1


def test_invalid_body_returns_400_json_error(client: TestClient, service: _StubService) -> None:
    response = client.post(
        "/api/explain", content=b"not json", headers={"content-type": "application/json"}
    )

    assert response.status_code == 400
    assert "error" in response.json()
    assert service.calls == 0


def test_downstream_failure_returns_500(settings: Settings, limiter: ServerRateLimiter) -> None:
    app = create_app(settings, rate_limiter=limiter)
    app.dependency_overrides[get_explainer_service] = lambda: _FailingService()
    with TestClient(app) as client:
        response = client.post("/api/explain", json={"code": "x", "language": "python"})

    assert response.status_code == 500
    assert response.json() == {"error": "Explanation failed"}
    assert limiter.get_remaining("unknown") == 1


def test_missing_credentials_returns_500(tmp_path: Path, limiter: ServerRateLimiter) -> None:
    settings = Settings(
        ark_api_key=None,
        ark_ak=None,
        ark_sk=None,
        audit_log_store_path=str(tmp_path / "audit.jsonl"),
        rate_limit_sweep_interval_seconds=0,
    )
    app = create_app(settings, rate_limiter=limiter)
    with TestClient(app) as client:
        response = client.post("/api/explain", json={"code": "x", "language": "python"})

    assert response.status_code == 500
    assert response.json() == {"error": "Explanation service temporarily unavailable"}


def test_app_settings_reach_the_explainer(
    tmp_path: Path, limiter: ServerRateLimiter, monkeypatch: pytest.MonkeyPatch
) -> None:
    for name in ("ARK_API_KEY", "ARK_AK", "ARK_SK"):
        monkeypatch.delenv(name, raising=False)
    seen: dict[str, str | None] = {}

    class _StubCompletions:
        async def create(self, **kwargs: object):  # type: ignore[override]
            seen["model"] = kwargs["model"]  # type: ignore[assignment]
            content = json.dumps(
                {
                    "analyzedLanguage": "Python",
                    "summary": "Assigns one.",
                    "context": "Anywhere.",
                    "lineByLine": [],
                    "furtherReading": [],
                }
            )
            message = type("_Message", (), {"content": content})()
            return type("_Response", (), {"choices": [type("_Choice", (), {"message": message})()]})()

    @asynccontextmanager
    async def fake_client(settings: Settings):
        seen["api_key"] = settings.ark_api_key
        yield type("_Ark", (), {"chat": type("_Chat", (), {"completions": _StubCompletions()})()})()

    monkeypatch.setattr(explainer, "open_ark_client", fake_client)
    settings = Settings(
        ark_api_key="configured",
        ark_explain_model="explain-model-under-test",
        audit_log_store_path=str(tmp_path / "audit.jsonl"),
        rate_limit_sweep_interval_seconds=0,
    )

    app = create_app(settings, rate_limiter=limiter)
    with TestClient(app) as client:
        response = client.post("/api/explain", json={"code": "x = 1", "language": "python"})

    assert response.status_code == 200
    assert response.json()["response"]["summary"] == "Assigns one."
    assert seen == {"api_key": "configured", "model": "explain-model-under-test"}


def test_requests_are_audited_with_rate_limit_key(
    client: TestClient, settings: Settings
) -> None:
    payload = {"code": "x", "language": "python"}
    headers = {"X-Forwarded-For": "203.0.113.77", "X-Request-Id": "req-1"}
    client.post("/api/explain", json=payload, headers=headers)
    client.post("/api/explain", json=payload, headers=headers)
    client.post("/api/explain", json=payload, headers=headers)

    lines = Path(settings.audit_log_store_path).read_text(encoding="utf-8").splitlines()
    first, last = json.loads(lines[0]), json.loads(lines[-1])
    assert first["request_id"] == "req-1"
    assert first["path"] == "/api/explain"
    assert first["status_code"] == 200
    assert first["rate_limit_key"] == "203.0.113.77"
    assert first["rate_limited"] is False
    assert first["duration_ms"] >= 0
    assert last["status_code"] == 429
    assert last["rate_limited"] is True


def test_lifespan_sweep_evicts_expired_windows(
    tmp_path: Path, limiter: ServerRateLimiter, service: _StubService, clock
) -> None:
    settings = Settings(
        ark_api_key="test",
        audit_log_store_path=str(tmp_path / "audit.jsonl"),
        rate_limit_sweep_interval_seconds=0.01,
    )
    app = create_app(settings, rate_limiter=limiter)
    app.dependency_overrides[get_explainer_service] = lambda: service

    with TestClient(app) as client:
        client.post("/api/explain", json={"code": "x", "language": "python"})
        client.post(
            "/api/explain",
            json={"code": "x", "language": "python"},
            headers={"X-Real-IP": "198.51.100.3"},
        )
        assert len(limiter) == 2

        clock.advance(61)
        deadline = time.monotonic() + 5
        while len(limiter) and time.monotonic() < deadline:
            time.sleep(0.02)

        assert len(limiter) == 0
