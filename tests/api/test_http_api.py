"""HTTP-level tests for the election platform API."""

import json

import pytest

USER = {"X-User-Data": json.dumps({"userId": 7, "email": "creator@example.com", "roles": ["Voter"]})}
ADMIN = {"X-User-Data": json.dumps({"userId": 1, "roles": ["Admin"]})}
API_KEY = {"X-API-Key": "vt_live_" + "cd" * 24}

KEY_ROW = {
    "id": 1, "key_id": "vt_live_cdcdcdcd", "name": "Partner", "environment": "live",
    "rate_limit_per_minute": 3, "is_active": True, "expires_at": None,
}


@pytest.mark.api
@pytest.mark.asyncio
class TestServiceEndpoints:
    """Health, root and metrics."""

    async def test_health(self, api_client):
        response = await api_client.get("/api/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"] == {"postgresql": "connected", "rate_limit_store": "memory"}

    async def test_health_reports_database_failure(self, api_client, fake_conn):
        fake_conn.on("SELECT 1", ConnectionError("refused"))
        response = await api_client.get("/api/v1/health")
        assert response.status_code == 503
        assert response.json()["services"]["postgresql"] == "disconnected"

    async def test_metrics_exposed(self, api_client):
        response = await api_client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text


@pytest.mark.api
@pytest.mark.asyncio
class TestAuthenticatedRoutes:
    """Identity header handling and error envelopes."""

    async def test_missing_identity(self, api_client):
        response = await api_client.get("/api/v1/elections/drafts")
        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "UNAUTHORIZED"

    async def test_malformed_identity(self, api_client):
        response = await api_client.get("/api/v1/elections/drafts", headers={"X-User-Data": "{not json"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid authentication data"

    async def test_non_string_roles_rejected(self, api_client):
        headers = {"X-User-Data": json.dumps({"userId": 7, "roles": 5})}
        response = await api_client.get("/api/v1/elections/drafts", headers=headers)
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid authentication data"

    async def test_body_validation_error_envelope(self, api_client):
        response = await api_client.post("/api/v1/elections/drafts", headers=USER, json={"title": "  "})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_admin_routes_reject_voters(self, api_client):
        response = await api_client.get("/api/v1/admin/api-keys", headers=USER)
        assert response.status_code == 403

    async def test_admin_lists_keys(self, api_client, fake_conn):
        fake_conn.on("FROM api_keys WHERE created_by = $1", [KEY_ROW])
        response = await api_client.get("/api/v1/admin/api-keys", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["data"][0]["key_id"] == "vt_live_cdcdcdcd"


@pytest.mark.api
@pytest.mark.asyncio
class TestPublishEndpoint:
    """POST /elections/drafts/{id}/publish."""

    @pytest.fixture
    def draft(self, fake_conn):
        fake_conn.on("SELECT * FROM election_drafts", {
            "id": 3, "creator_id": 7,
            "draft_data": {"title": "Town Poll", "start_date": "2099-01-01", "end_date": "2099-01-31"},
        })
        fake_conn.on("INSERT INTO elections", {
            "id": 42, "slug": "town-poll", "title": "Town Poll", "status": "published",
            "voting_type": "plurality", "processing_fee_percentage": 0,
        })
        fake_conn.on("INSERT INTO election_lottery_config", {"election_id": 42, "is_lotterized": False})
        return fake_conn

    async def test_publish(self, api_client, draft):
        response = await api_client.post(
            "/api/v1/elections/drafts/3/publish", headers=USER, json={"election": {"slug": "town-poll"}}
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["election"]["id"] == 42
        assert data["questions_count"] == 0
        assert data["shareable_url"].endswith("/vote/town-poll")
        assert draft.commits == 1

    async def test_publish_without_body(self, api_client, draft):
        response = await api_client.post("/api/v1/elections/drafts/3/publish", headers=USER)
        assert response.status_code == 201

    async def test_slug_conflict(self, api_client, draft):
        draft.on("SELECT id FROM elections WHERE slug", 9)
        response = await api_client.post(
            "/api/v1/elections/drafts/3/publish", headers=USER, json={"election": {"slug": "town-poll"}}
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "SLUG_EXISTS"
        assert draft.rollbacks == 1
        assert draft.queries("INSERT INTO elections") == []

    async def test_unknown_draft(self, api_client, fake_conn):
        response = await api_client.post("/api/v1/elections/drafts/99/publish", headers=USER)
        assert response.status_code == 404
        assert response.json()["message"] == "Draft not found"


@pytest.mark.api
@pytest.mark.asyncio
class TestPublicApi:
    """API key gate in front of /public."""

    async def test_health_needs_no_key(self, api_client):
        response = await api_client.get("/api/v1/public/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_missing_key(self, api_client):
        response = await api_client.get("/api/v1/public/categories")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "MISSING_API_KEY"

    async def test_unknown_key(self, api_client):
        response = await api_client.get("/api/v1/public/categories", headers=API_KEY)
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "KEY_NOT_FOUND"

    async def test_allowed_request_carries_limit_headers(self, api_client, fake_conn):
        fake_conn.on("FROM api_keys WHERE key_hash", KEY_ROW)
        fake_conn.on("INSERT INTO api_key_rate_limits", 1)
        fake_conn.on("FROM election_categories", [{"id": 1, "category_name": "Civic", "description": None}])

        response = await api_client.get("/api/v1/public/categories", headers=API_KEY)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert response.headers["X-RateLimit-Remaining"] == "2"
        body = response.json()
        assert body["data"][0]["category_name"] == "Civic"
        assert body["meta"]["rate_limit"]["remaining"] == 2
        logged = fake_conn.queries("INSERT INTO api_key_usage_logs")
        assert logged[0][2][:4] == ("vt_live_cdcdcdcd", "/api/v1/public/categories", "GET", 200)

    async def test_over_limit(self, api_client, fake_conn):
        fake_conn.on("FROM api_keys WHERE key_hash", KEY_ROW)
        fake_conn.on("INSERT INTO api_key_rate_limits", 4)

        response = await api_client.get("/api/v1/public/categories", headers=API_KEY)

        assert response.status_code == 429
        assert 1 <= int(response.headers["Retry-After"]) <= 60
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert fake_conn.queries("FROM election_categories") == []
        assert fake_conn.queries("INSERT INTO api_key_usage_logs")[0][2][3] == 429

    async def test_preflight_answered_without_key(self, api_client):
        response = await api_client.options(
            "/api/v1/public/elections",
            headers={"Origin": "https://partner.example.com", "Access-Control-Request-Method": "GET"}
        )
        assert response.status_code == 200
        assert "access-control-allow-origin" in response.headers
        assert "access-control-allow-methods" in response.headers

    async def test_rejections_carry_cors_headers(self, api_client):
        response = await api_client.get(
            "/api/v1/public/categories", headers={"Origin": "https://partner.example.com"}
        )
        assert response.status_code == 401
        assert "access-control-allow-origin" in response.headers
