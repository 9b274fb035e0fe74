"""
Tests for the bulk job HTTP API.

Bulk jobs run through the fake URL processor from conftest; URLs
containing "fail" produce failed results.
"""

import asyncio

import pytest
from httpx import AsyncClient

FAST_OPTIONS = {"max_concurrency": 2, "delay_between_requests": 0, "timeout": 5000}


async def create_job(client: AsyncClient, headers: dict, urls: list[str], **options) -> str:
    response = await client.post(
        "/api/v1/bulk/jobs",
        json={"urls": urls, "options": {**FAST_OPTIONS, **options}},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]["job_id"]


async def wait_for_terminal(client: AsyncClient, headers: dict, job_id: str) -> dict:
    for _ in range(200):
        response = await client.get(f"/api/v1/bulk/jobs/{job_id}", headers=headers)
        data = response.json()["data"]
        if data["status"] in ("completed", "failed", "cancelled"):
            return data
        await asyncio.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


class TestAuthentication:
    @pytest.mark.integration
    async def test_missing_token(self, test_client: AsyncClient) -> None:
        response = await test_client.get("/api/v1/bulk/jobs")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["error_type"] == "AuthenticationError"

    @pytest.mark.integration
    async def test_invalid_token(self, test_client: AsyncClient) -> None:
        response = await test_client.get(
            "/api/v1/bulk/jobs", headers={"Authorization": "Bearer garbage"}
        )
        assert response.status_code == 401


class TestCreateJob:
    @pytest.mark.integration
    async def test_create_drops_invalid_urls(
        self, test_client: AsyncClient, auth_headers: dict
    ) -> None:
        response = await test_client.post(
            "/api/v1/bulk/jobs",
            json={"urls": ["https://a.test/", "nope", "https://a.test/"]},
            headers=auth_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "pending"
        assert body["data"]["total"] == 1
        assert body["message"] == "Bulk processing job created successfully"

    @pytest.mark.integration
    async def test_no_valid_urls(self, test_client: AsyncClient, auth_headers: dict) -> None:
        response = await test_client.post(
            "/api/v1/bulk/jobs", json={"urls": ["nope"]}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["error_type"] == "InvalidInputError"

    @pytest.mark.integration
    async def test_too_many_urls(self, test_client: AsyncClient, auth_headers: dict) -> None:
        urls = [f"https://example.com/{i}" for i in range(101)]
        response = await test_client.post(
            "/api/v1/bulk/jobs", json={"urls": urls}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["limit"] == 100

    @pytest.mark.integration
    async def test_malformed_body_uses_error_envelope(
        self, test_client: AsyncClient, auth_headers: dict
    ) -> None:
        response = await test_client.post(
            "/api/v1/bulk/jobs",
            json={"urls": [], "options": {"max_concurrency": 50}},
            headers=auth_headers,
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["error_type"] == "InvalidInputError"
        assert error["details"]["errors"]

    @pytest.mark.integration
    async def test_quota(self, test_client: AsyncClient, auth_headers: dict) -> None:
        for _ in range(3):
            await create_job(test_client, auth_headers, ["https://a.test/"])

        response = await test_client.post(
            "/api/v1/bulk/jobs", json={"urls": ["https://a.test/"]}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["error_type"] == "QuotaExceededError"


class TestJobLifecycle:
    @pytest.mark.integration
    async def test_start_runs_to_completion(
        self, test_client: AsyncClient, auth_headers: dict
    ) -> None:
        urls = ["https://a.test/", "https://b.test/fail", "https://c.test/"]
        job_id = await create_job(test_client, auth_headers, urls, target_keywords=["seo"])

        response = await test_client.post(
            f"/api/v1/bulk/jobs/{job_id}/start", headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Bulk processing started"

        job = await wait_for_terminal(test_client, auth_headers, job_id)
        assert job["status"] == "completed"
        assert job["progress"] == {"total": 3, "completed": 2, "failed": 1, "current": 3}

        response = await test_client.get(
            f"/api/v1/bulk/jobs/{job_id}/results",
            params={"status": "success"},
            headers=auth_headers,
        )
        data = response.json()["data"]
        assert data["total"] == 2
        assert all(r["schema_markup"]["keywords"] == "seo" for r in data["results"])
        assert data["pagination"] == {"limit": 50, "offset": 0, "has_more": False}

    @pytest.mark.integration
    async def test_results_pagination(
        self, test_client: AsyncClient, auth_headers: dict
    ) -> None:
        urls = [f"https://example.com/{i}" for i in range(5)]
        job_id = await create_job(test_client, auth_headers, urls, max_concurrency=5)
        await test_client.post(f"/api/v1/bulk/jobs/{job_id}/start", headers=auth_headers)
        await wait_for_terminal(test_client, auth_headers, job_id)

        response = await test_client.get(
            f"/api/v1/bulk/jobs/{job_id}/results",
            params={"limit": 2, "offset": 2},
            headers=auth_headers,
        )
        data = response.json()["data"]
        assert data["total"] == 5
        assert len(data["results"]) == 2
        assert data["pagination"]["has_more"] is True

    @pytest.mark.integration
    async def test_start_twice_is_bad_request(
        self, test_client: AsyncClient, auth_headers: dict
    ) -> None:
        job_id = await create_job(test_client, auth_headers, ["https://a.test/"])
        await test_client.post(f"/api/v1/bulk/jobs/{job_id}/start", headers=auth_headers)
        await wait_for_terminal(test_client, auth_headers, job_id)

        response = await test_client.post(
            f"/api/v1/bulk/jobs/{job_id}/start", headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json()["error"]["error_type"] == "InvalidStateError"

    @pytest.mark.integration
    async def test_cancel_pending_then_again(
        self, test_client: AsyncClient, auth_headers: dict
    ) -> None:
        job_id = await create_job(test_client, auth_headers, ["https://a.test/"])

        response = await test_client.post(
            f"/api/v1/bulk/jobs/{job_id}/cancel", headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"
        assert response.json()["message"] == "Job cancelled successfully"

        again = await test_client.post(f"/api/v1/bulk/jobs/{job_id}/cancel", headers=auth_headers)
        assert again.status_code == 400

    @pytest.mark.integration
    async def test_other_users_job_is_hidden(
        self, test_client: AsyncClient, auth_headers: dict, other_headers: dict
    ) -> None:
        job_id = await create_job(test_client, auth_headers, ["https://a.test/"])

        response = await test_client.get(f"/api/v1/bulk/jobs/{job_id}", headers=other_headers)
        assert response.status_code == 404
        assert response.json()["error"]["error_type"] == "JobNotFoundError"

        start = await test_client.post(
            f"/api/v1/bulk/jobs/{job_id}/start", headers=other_headers
        )
        cancel = await test_client.post(
            f"/api/v1/bulk/jobs/{job_id}/cancel", headers=other_headers
        )
        assert start.status_code == 400
        assert cancel.status_code == 400

        listing = await test_client.get("/api/v1/bulk/jobs", headers=other_headers)
        assert listing.json()["data"]["total"] == 0

    @pytest.mark.integration
    async def test_list_filters_by_status(
        self, test_client: AsyncClient, auth_headers: dict
    ) -> None:
        first = await create_job(test_client, auth_headers, ["https://a.test/"])
        await create_job(test_client, auth_headers, ["https://b.test/"])
        await test_client.post(f"/api/v1/bulk/jobs/{first}/cancel", headers=auth_headers)

        response = await test_client.get(
            "/api/v1/bulk/jobs", params={"status": "cancelled"}, headers=auth_headers
        )
        jobs = response.json()["data"]["jobs"]
        assert [j["id"] for j in jobs] == [first]

        response = await test_client.get(
            "/api/v1/bulk/jobs", params={"limit": 51}, headers=auth_headers
        )
        assert response.status_code == 400


class TestStatsAndCleanup:
    @pytest.mark.integration
    async def test_stats(self, test_client: AsyncClient, auth_headers: dict) -> None:
        job_id = await create_job(test_client, auth_headers, ["https://a.test/"])
        await test_client.post(f"/api/v1/bulk/jobs/{job_id}/start", headers=auth_headers)
        await wait_for_terminal(test_client, auth_headers, job_id)

        response = await test_client.get("/api/v1/bulk/stats", headers=auth_headers)
        stats = response.json()["data"]
        assert stats["total_jobs"] == 1
        assert stats["completed_jobs"] == 1
        assert stats["active_jobs"] == 0

    @pytest.mark.integration
    async def test_cleanup_requires_admin_key(
        self, test_client: AsyncClient, auth_headers: dict, admin_api_key: str
    ) -> None:
        response = await test_client.post("/api/v1/bulk/cleanup", headers=auth_headers)
        assert response.status_code == 401

        response = await test_client.post(
            "/api/v1/bulk/cleanup", headers={**auth_headers, "X-API-Key": "wrong"}
        )
        assert response.status_code == 401

        response = await test_client.post(
            "/api/v1/bulk/cleanup", headers={**auth_headers, "X-API-Key": admin_api_key}
        )
        assert response.status_code == 200
        assert response.json()["data"] == {"jobs_removed": 0}


class TestHealth:
    @pytest.mark.integration
    async def test_health(self, test_client: AsyncClient) -> None:
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["active_jobs"] == 0

    @pytest.mark.integration
    async def test_unknown_route_uses_error_envelope(self, test_client: AsyncClient) -> None:
        response = await test_client.get("/api/v1/nope")

        assert response.status_code == 404
        assert response.json()["error"]["error_type"] == "HTTPError"
