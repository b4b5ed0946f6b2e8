"""Test health check endpoint."""


def test_healthz_endpoint(client):
    """Health check should return 200 with status info."""
    res = client.get("/healthz")
    assert res.status_code == 200
    data = res.json()
    assert data["status"] == "healthy"
    assert "checks" in data
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["storage"] == "ok"


def test_healthz_reports_missing_bucket(client, s3):
    s3.delete_bucket(Bucket="mediagate-tests")
    res = client.get("/healthz")
    assert res.status_code == 503
    assert res.json()["detail"]["checks"]["storage"] == "failed"
