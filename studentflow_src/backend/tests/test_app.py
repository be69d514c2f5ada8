import pytest
from fastapi.testclient import TestClient

from app import app, get_ai_service
from rate_limiter import RateLimiter

HEADERS = {"X-User-Id": "user-1"}


class StubService:
    """Records calls and returns canned payloads."""

    enabled = True

    def __init__(self):
        self.calls = []

    async def calculate_project_health(self, project_id, user_id):
        self.calls.append(("health", project_id, user_id))
        return {"score": 80, "status": "excellent", "insights": []}

    async def suggest_next_tasks(self, project_id, user_id):
        self.calls.append(("suggestions", project_id, user_id))
        return [{"title": "Draft outline", "description": "", "priority": "high", "reasoning": ""}]

    async def generate_insights_report(self, project_id, user_id):
        self.calls.append(("report", project_id, user_id))
        return {"summary": "Project has 0/0 tasks completed.", "recommendations": []}

    async def calculate_global_health(self, user_id):
        self.calls.append(("global-health", user_id))
        return {"score": 0, "status": "critical", "insights": []}

    async def suggest_next_global_tasks(self, user_id):
        self.calls.append(("global-suggestions", user_id))
        return []

    async def generate_global_insights_report(self, user_id):
        self.calls.append(("global-report", user_id))
        return {"summary": "s", "recommendations": []}

    async def analyze_document(self, content, project_id, user_id):
        self.calls.append(("document", content, project_id, user_id))
        return {"summary": "doc"}

    async def analyze_file(self, data, mime_type, file_name, project_id, user_id):
        self.calls.append(("file", data, mime_type, file_name, project_id, user_id))
        return {"summary": "file"}

    async def generate_suggestions_from_tasks(self, project_id, tasks, user_id):
        self.calls.append(("from-tasks", project_id, tasks, user_id))
        return []


@pytest.fixture
def stub():
    service = StubService()
    app.dependency_overrides[get_ai_service] = lambda: service
    app.state.rate_limiter = RateLimiter(max_requests=10, window_seconds=60)
    yield service
    app.dependency_overrides.clear()


@pytest.fixture
def client(stub):
    return TestClient(app)


def test_service_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "aiEnabled": True}


def test_requires_user_header(client, stub):
    resp = client.get("/api/ai/global-health")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}
    assert stub.calls == []


@pytest.mark.parametrize("path,call", [
    ("/api/projects/p1/ai/health", ("health", "p1", "user-1")),
    ("/api/projects/p1/ai/suggestions", ("suggestions", "p1", "user-1")),
    ("/api/projects/p1/ai/report", ("report", "p1", "user-1")),
    ("/api/ai/global-health", ("global-health", "user-1")),
    ("/api/ai/global-suggestions", ("global-suggestions", "user-1")),
    ("/api/ai/global-report", ("global-report", "user-1")),
])
def test_get_routes(client, stub, path, call):
    resp = client.get(path, headers=HEADERS)
    assert resp.status_code == 200
    assert stub.calls == [call]


def test_analyze_document(client, stub):
    resp = client.post("/api/ai/analyze-document", headers=HEADERS,
                       json={"content": "Essay brief", "projectId": "p1"})
    assert resp.status_code == 200
    assert resp.json() == {"summary": "doc"}
    assert stub.calls == [("document", "Essay brief", "p1", "user-1")]


def test_analyze_document_requires_content(client, stub):
    resp = client.post("/api/ai/analyze-document", headers=HEADERS, json={"projectId": "p1"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Content is required"}
    assert stub.calls == []


def test_analyze_file_upload(client, stub):
    resp = client.post(
        "/api/ai/analyze-file",
        headers=HEADERS,
        files={"file": ("brief.pdf", b"%PDF-1.7", "application/pdf")},
        data={"projectId": "p1"},
    )
    assert resp.status_code == 200
    assert stub.calls == [("file", b"%PDF-1.7", "application/pdf", "brief.pdf", "p1", "user-1")]


def test_generate_suggestions(client, stub):
    tasks = [{"title": "Write intro", "status": "todo"}]
    resp = client.post("/api/ai/generate-suggestions", headers=HEADERS, json={"projectId": "all", "tasks": tasks})
    assert resp.status_code == 200
    assert stub.calls == [("from-tasks", "all", tasks, "user-1")]


def test_generate_suggestions_requires_tasks(client):
    resp = client.post("/api/ai/generate-suggestions", headers=HEADERS, json={"projectId": "p1"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Tasks array is required"}


def test_rate_limited_per_user_and_route(client, stub):
    app.state.rate_limiter = RateLimiter(max_requests=2, window_seconds=60)

    for _ in range(2):
        assert client.get("/api/ai/global-health", headers=HEADERS).status_code == 200
    resp = client.get("/api/ai/global-health", headers=HEADERS)

    assert resp.status_code == 429
    body = resp.json()
    assert body["error"] == "Too many requests"
    assert 1 <= body["retryAfter"] <= 60
    assert resp.headers["Retry-After"] == str(body["retryAfter"])

    assert client.get("/api/ai/global-report", headers=HEADERS).status_code == 200
    assert client.get("/api/ai/global-health", headers={"X-User-Id": "user-2"}).status_code == 200
    assert len(stub.calls) == 4


def test_unknown_route(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found", "path": "/api/nope"}


def test_unexpected_error_is_500(stub):
    async def boom(user_id):
        raise RuntimeError("db down")

    stub.calculate_global_health = boom
    resp = TestClient(app, raise_server_exceptions=False).get("/api/ai/global-health", headers=HEADERS)
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal Server Error"}
