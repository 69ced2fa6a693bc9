def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["trace_id"]
    assert response.headers["X-Trace-ID"] == payload["trace_id"]


def test_health_echoes_valid_trace_id(client):
    response = client.get("/health", headers={"X-Trace-ID": "till-7.trace_01"})
    assert response.status_code == 200
    assert response.json()["trace_id"] == "till-7.trace_01"
    assert response.headers["X-Trace-ID"] == "till-7.trace_01"


def test_health_replaces_malformed_trace_id(client):
    response = client.get("/health", headers={"X-Trace-ID": "bad trace id!"})
    assert response.status_code == 200
    assert response.headers["X-Trace-ID"] != "bad trace id!"
