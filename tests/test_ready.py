def test_ready(client):
    response = client.get("/ready")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["trace_id"]


def test_metrics_exposes_webhook_counters(client):
    client.post("/api/webhooks/mercadopago", json={"type": "merchant_order", "action": "created"})

    response = client.get("/api/ops/metrics")
    assert response.status_code == 200
    body = response.text
    assert "webhook_events_total" in body
    assert 'result="ignored_event"' in body
    assert "http_requests_total" in body
