"""
Integration tests for API endpoints.
"""
import pytest
from fastapi.testclient import TestClient

from main import app
from vizengine.api.routes import limiter
from vizengine.core.config import reload_settings


@pytest.fixture
def client():
    """Create a test client."""
    limiter.reset()
    return TestClient(app)


def _region_rows(count=20):
    return [{"region": "north" if i % 2 == 0 else "south", "sales": 100 + i * 7} for i in range(count)]


@pytest.mark.integration
def test_health_check(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.integration
def test_root_endpoint(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "message" in response.json()


@pytest.mark.integration
def test_correlation_id_is_echoed(client):
    response = client.get("/api/health", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"
    assert "X-Response-Time" in response.headers


@pytest.mark.integration
def test_profile_column(client):
    rows = [{"value": v} for v in [1, 2, 3, 4, 100]]
    response = client.post("/api/profile", json={"rows": rows, "column": "value"})

    assert response.status_code == 200
    data = response.json()
    assert data["column_type"] == "numeric"
    assert data["mean"] == pytest.approx(22.0)
    assert data["median"] == 3.0
    assert "high_nulls" not in data["anomalies"]


@pytest.mark.integration
def test_unknown_column_is_404(client):
    response = client.post("/api/profile", json={"rows": [{"a": 1}], "column": "b"})

    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["code"] == "UNKNOWN_COLUMN"
    assert "correlation_id" in detail


@pytest.mark.integration
def test_dataset_too_large(client, monkeypatch):
    monkeypatch.setenv("MAX_DATASET_ROWS", "100")
    reload_settings()

    rows = [{"value": i} for i in range(101)]
    response = client.post("/api/classify", json={"rows": rows, "column": "value"})

    assert response.status_code == 413
    assert response.json()["detail"]["code"] == "DATASET_TOO_LARGE"


@pytest.mark.integration
def test_classify_column(client):
    rows = [{"value": v} for v in [1, 2, 3, 4, 100]]
    response = client.post("/api/classify", json={"rows": rows, "column": "value"})

    assert response.status_code == 200
    data = response.json()
    assert data["type"] == "numeric"
    assert data["confidence"] >= 0.6
    assert data["confidence_band"] == "high"
    assert data["needs_review"] is False


@pytest.mark.integration
def test_override_and_clear(client):
    rows = [{"notes": f"entry {i}"} for i in range(60)]
    response = client.post("/api/columns/override", json={"column": "notes", "type": "categorical", "rows": rows})
    assert response.status_code == 200
    assert response.json()["source"] == "manual"

    classified = client.post("/api/classify", json={"rows": rows, "column": "notes"}).json()
    assert classified["type"] == "categorical"

    response = client.delete("/api/columns/override/notes")
    assert response.json() == {"column": "notes", "cleared": True}

    classified = client.post("/api/classify", json={"rows": rows, "column": "notes"}).json()
    assert classified["type"] == "text"


@pytest.mark.integration
def test_detect_hierarchies(client):
    rows = [{"country": c, "city": city} for c, city in
            [("USA", "NYC"), ("USA", "LA"), ("Canada", "Toronto"), ("USA", "NYC"), ("Canada", "Toronto")]]
    response = client.post("/api/hierarchies", json={"rows": rows})

    assert response.status_code == 200
    relations = response.json()
    assert len(relations) == 1
    assert relations[0]["parent_column"] == "country"
    assert relations[0]["child_column"] == "city"


@pytest.mark.integration
def test_hierarchy_tree(client):
    rows = [{"category": p} for p in ["A/x", "A/y", "A/x", "B/z"]]
    response = client.post("/api/hierarchies/tree", json={"rows": rows, "parent": "category", "max_breadth": 1})

    assert response.status_code == 200
    tree = response.json()
    assert [n["name"] for n in tree] == ["A", "(+1 more)"]
    assert tree[0]["children"][0]["name"] == "x"


@pytest.mark.integration
def test_suggest_chart(client):
    response = client.post("/api/suggest", json={"rows": _region_rows(), "columns": ["region", "sales"]})

    assert response.status_code == 200
    data = response.json()
    assert data["chart_type"] in ("pie", "bar")
    assert data["x_column"] == "region"
    assert data["y_column"] == "sales"


@pytest.mark.integration
def test_suggest_chart_with_query(client):
    rows = [{"date": f"2024-{m:02d}-01", "sales": 1000 + m * 50} for m in range(1, 13)]
    response = client.post("/api/suggest", json={"rows": rows, "query": "show sales trend over time"})

    data = response.json()
    assert data["chart_type"] == "line"
    assert data["x_column"] == "date"
    assert data["aggregation_method"] == "sum"


@pytest.mark.integration
def test_suggest_chart_on_empty_dataset(client):
    response = client.post("/api/suggest", json={"rows": []})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "VALIDATION_ERROR"
    assert "No data available" in detail["detail"]
    assert "Insufficient data points" in detail["detail"]


@pytest.mark.integration
def test_suggest_is_rate_limited(client, monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_PER_MINUTE", "2")
    reload_settings()

    statuses = [
        client.post("/api/suggest", json={"rows": _region_rows()}).status_code
        for _ in range(3)
    ]

    assert statuses[:2] == [200, 200]
    assert statuses[2] == 429


@pytest.mark.integration
def test_submit_feedback(client):
    response = client.post("/api/feedback", json={
        "column_name": "dob",
        "original_type": "text",
        "corrected_type": "date",
        "sample_values": ["1990-01-01"],
    })

    assert response.status_code == 201
    assert response.json()["column_name"] == "dob"


@pytest.mark.integration
def test_feedback_with_unchanged_type_is_rejected(client):
    response = client.post("/api/feedback", json={
        "column_name": "dob",
        "original_type": "date",
        "corrected_type": "date",
    })

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "FEEDBACK_REJECTED"


@pytest.mark.integration
def test_malformed_feedback_is_422(client):
    response = client.post("/api/feedback", json={"column_name": "", "original_type": "text"})
    assert response.status_code == 422


@pytest.mark.integration
def test_submit_chart_feedback(client):
    response = client.post("/api/feedback/chart", json={
        "suggested_chart_type": "pie",
        "corrected_chart_type": "bar",
        "data_shape": "categorical+numeric",
    })
    assert response.status_code == 201


@pytest.mark.integration
def test_learning_cycle(client):
    for _ in range(3):
        client.post("/api/feedback", json={
            "column_name": "dob",
            "original_type": "text",
            "corrected_type": "date",
        })

    response = client.post("/api/learning/run")
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    rules = client.get("/api/learning/rules").json()
    assert len(rules) == 1
    assert rules[0]["pattern"] == "dob"
    assert rules[0]["target_type"] == "date"

    confidence = client.get("/api/learning/confidence", params={"column": "dob", "type": "date"}).json()
    assert confidence["confidence"] == 1.0

    status = client.get("/api/learning/status").json()
    assert status["runs"] == 1
    assert status["last_result"]["status"] == "completed"


@pytest.mark.integration
def test_metrics_endpoint(client):
    client.post("/api/suggest", json={"rows": _region_rows()})

    response = client.get("/api/metrics")

    assert response.status_code == 200
    data = response.json()
    assert "suggest_chart" in data["performance"]
    assert "request_duration" in data["performance"]
    assert data["learning"]["active_rules"] == 0
    assert data["learning"]["scheduler"]["enabled"] is False
