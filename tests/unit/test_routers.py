import pytest

from app.core.config import settings
from app.core.errors import Unauthorized
from app.core.security import COOKIE_NAME, check_authorization, hash_password
from app.services import sync as sync_service
from app.services.usage_store import count_records
from tests.helpers import detail, snapshot

AUTH = {"Authorization": "Bearer secret"}

PAYLOAD = snapshot(
    ("openai", "gpt-4o", detail("2026-03-01T01:10:00Z", input_tokens=100)),
    ("claude", "sonnet", detail("2026-03-01T02:10:00Z", output_tokens=5, failed=True)),
)


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(settings, "password", "secret")
    monkeypatch.setattr(settings, "cron_secret", "cron")
    monkeypatch.setattr(settings, "cliproxy_base_url", "http://proxy/v0/management")
    monkeypatch.setattr(settings, "cliproxy_api_key", "key")
    monkeypatch.setattr(sync_service, "fetch_upstream_usage", lambda cfg: PAYLOAD)


def test_health(client):
    body = client.get("/health").json()
    assert body["ok"] is True
    assert body["db"] is True


def test_sync_without_password_is_not_implemented(client):
    assert client.post("/sync").status_code == 501


def test_sync_rejects_bad_credentials(client, configured):
    assert client.post("/sync").status_code == 401
    assert client.post("/sync", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_sync_inserts_then_skips(client, db, configured):
    first = client.post("/sync", headers=AUTH)
    assert first.status_code == 200
    assert first.json()["inserted"] == 2

    second = client.get("/sync", headers={"Authorization": "Bearer cron"})
    body = second.json()
    assert (body["status"], body["inserted"], body["attempted"], body["skipped"]) == ("ok", 0, 2, 2)
    assert count_records(db) == 2


def test_sync_accepts_dashboard_cookie(client, configured):
    client.cookies.set(COOKIE_NAME, hash_password("secret"))
    assert client.post("/sync").status_code == 200


def test_sync_upstream_not_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "password", "secret")
    assert client.post("/sync", headers=AUTH).status_code == 501


def test_sync_upstream_failure_passes_status_through(client, configured, monkeypatch):
    def fail(cfg):
        raise sync_service.UpstreamFetchError(503, "Service Unavailable")

    monkeypatch.setattr(sync_service, "fetch_upstream_usage", fail)
    resp = client.post("/sync", headers=AUTH)
    assert resp.status_code == 503
    assert resp.json()["status_text"] == "Service Unavailable"


def test_sync_bad_payload_is_bad_gateway(client, configured, monkeypatch):
    monkeypatch.setattr(sync_service, "fetch_upstream_usage", lambda cfg: {"nothing": "here"})
    assert client.post("/sync", headers=AUTH).status_code == 502


def test_overview_endpoint(client, configured):
    client.post("/sync", headers=AUTH)
    resp = client.get("/overview", params={"start": "2026-03-01", "end": "2026-03-01", "pageSize": "5"})
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "private, max-age=30, stale-while-revalidate=60"
    body = resp.json()
    assert body["days"] == 1
    assert body["overview"]["total_requests"] == 2
    assert body["meta"]["page_size"] == 5
    assert body["meta"]["source"] == "rollup"

    raw = client.get("/overview", params={"start": "2026-03-01", "end": "2026-03-01", "preagg": "0"}).json()
    assert raw["meta"]["source"] == "raw"
    assert raw["overview"]["total_requests"] == 2


def test_overview_bad_param_is_400(client):
    resp = client.get("/overview", params={"start": "soon"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["field"] == "start"


def test_prices_crud(client, configured):
    assert client.get("/prices").status_code == 401

    resp = client.post("/prices", headers=AUTH, json={
        "model": "gemini-2*", "input_price_per_1m": 1.25, "output_price_per_1m": 5,
    })
    assert resp.status_code == 200
    assert resp.json()["price"]["cached_input_price_per_1m"] == 0

    prices = client.get("/prices", headers=AUTH).json()["prices"]
    assert [p["model"] for p in prices] == ["gemini-2*"]

    assert client.request("DELETE", "/prices", headers=AUTH, json={"model": "gemini-2*"}).status_code == 200
    assert client.request("DELETE", "/prices", headers=AUTH, json={"model": "gemini-2*"}).status_code == 404


def test_prices_validation_is_400_with_field(client, configured):
    resp = client.post("/prices", headers=AUTH, json={"model": "x", "input_price_per_1m": -1, "output_price_per_1m": 1})
    assert resp.status_code == 400
    assert resp.json()["details"][0]["path"] == "input_price_per_1m"


def test_vitals_ingest_and_summary(client):
    resp = client.post("/vitals", json={"metrics": [
        {"name": "LCP", "id": "v1-1", "value": 1800, "delta": 1800, "pathname": "/"},
    ]}, headers={"User-Agent": "pytest"})
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "accepted": 1, "sampled_out": 0}

    summary = client.get("/vitals/summary").json()
    assert summary["items"][0]["name"] == "LCP"
    assert summary["items"][0]["rating"] == "good"


def test_vitals_rejects_oversized_batch(client):
    metric = {"name": "LCP", "id": "x", "value": 1, "delta": 1}
    assert client.post("/vitals", json={"metrics": [metric] * 51}).status_code == 400
    assert client.post("/vitals", json={"metrics": []}).status_code == 400
    assert client.post("/vitals", json={"metrics": [{**metric, "name": "XYZ"}]}).status_code == 400


def test_analytics_endpoints(client, configured):
    client.post("/sync", headers=AUTH)
    for path in ("/analytics/cost/trend-by-model", "/analytics/errors/timeseries",
                 "/analytics/errors/top", "/analytics/tokens/breakdown"):
        resp = client.get(path, params={"hours": 24})
        assert resp.status_code == 200
        assert isinstance(resp.json(), list)


def test_reset_requires_confirmation_header(client, db, configured):
    client.post("/sync", headers=AUTH)
    assert client.post("/reset").status_code == 400
    resp = client.post("/reset", headers={"x-confirm-reset": "yes-delete-all-data"})
    assert resp.status_code == 200
    assert resp.json()["deleted_records"] == 2
    assert count_records(db) == 0


def test_reset_disabled_in_production(client, monkeypatch):
    monkeypatch.setattr(settings, "app_env", "production")
    resp = client.post("/reset", headers={"x-confirm-reset": "yes-delete-all-data"})
    assert resp.status_code == 403


def test_non_ascii_credentials_are_rejected_not_crashing(client, configured):
    resp = client.post("/sync", headers={"Authorization": "Bearer é".encode("latin-1")})
    assert resp.status_code == 401


def test_check_authorization_compares_unicode_safely():
    cfg = settings.model_copy(update={"password": "pässword", "cron_secret": None})
    check_authorization("Bearer pässword", None, cfg)
    with pytest.raises(Unauthorized):
        check_authorization("Bearer é", "ünicode-cookie", cfg)
