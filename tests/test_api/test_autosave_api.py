"""
Tests for the autosave and draft history HTTP API.
"""

import csv
import io

import pytest
import pytest_asyncio
from httpx import AsyncClient

from schemaforge.utils.dates import parse_iso

ARTICLE = {"@context": "https://schema.org", "@type": "Article", "headline": "Hello"}


@pytest_asyncio.fixture
async def project_id(test_client: AsyncClient, auth_headers: dict) -> str:
    response = await test_client.post(
        "/api/v1/projects",
        json={"project_name": "Blog", "target_url": "https://example.com/blog"},
        headers=auth_headers,
    )
    return response.json()["data"]["id"]


def url(project_id: str, path: str) -> str:
    return f"/api/v1/autosave/project/{project_id}/{path}"


async def autosave(client: AsyncClient, headers: dict, project_id: str, content: dict, **extra):
    return await client.post(
        url(project_id, "autosave"), json={"draft_content": content, **extra}, headers=headers
    )


class TestAutosave:
    @pytest.mark.integration
    async def test_status_before_any_save(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str
    ) -> None:
        response = await test_client.get(url(project_id, "status"), headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"]["error_type"] == "AutosaveNotFoundError"

    @pytest.mark.integration
    async def test_autosave_then_status(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str
    ) -> None:
        first = await autosave(test_client, auth_headers, project_id, ARTICLE)
        second = await autosave(test_client, auth_headers, project_id, ARTICLE)

        assert first.status_code == 200
        assert first.json()["data"]["version"] == 1
        assert second.json()["data"]["version"] == 2
        assert second.json()["data"]["draft_version"] == 2
        assert parse_iso(second.json()["data"]["saved_at"]) > parse_iso(
            first.json()["data"]["saved_at"]
        )

        status = (await test_client.get(url(project_id, "status"), headers=auth_headers)).json()
        assert status["data"]["has_autosave"] is True
        assert status["data"]["version"] == 2
        assert status["data"]["project_name"] == "Blog"

    @pytest.mark.integration
    async def test_expected_version_conflict(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str
    ) -> None:
        await autosave(test_client, auth_headers, project_id, ARTICLE)

        response = await autosave(
            test_client, auth_headers, project_id, ARTICLE, expected_version=0
        )

        assert response.status_code == 409
        assert response.json()["error"]["details"]["current_version"] == 1

    @pytest.mark.integration
    async def test_manual_save_records_client_metadata(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str
    ) -> None:
        response = await test_client.post(
            url(project_id, "save"),
            json={"draft_content": ARTICLE, "version": 4},
            headers={**auth_headers, "User-Agent": "pytest-agent"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Draft saved successfully"
        assert body["data"]["version"] == 4
        assert body["data"]["client_metadata"]["user_agent"] == "pytest-agent"
        assert body["data"]["client_metadata"]["browser"] == "unknown"

    @pytest.mark.integration
    async def test_content_must_be_an_object(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str
    ) -> None:
        response = await test_client.post(
            url(project_id, "autosave"), json={"draft_content": [1, 2]}, headers=auth_headers
        )
        assert response.status_code == 400

    @pytest.mark.integration
    async def test_recover_and_recovery_token(
        self, test_client: AsyncClient, auth_headers: dict, other_headers: dict, project_id: str
    ) -> None:
        await autosave(test_client, auth_headers, project_id, ARTICLE)

        response = await test_client.get(url(project_id, "recover"), headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["draft_content"] == ARTICLE

        status = await test_client.get(url(project_id, "recovery-status"), headers=auth_headers)
        token = status.json()["data"]["recovery_token"]
        assert status.json()["data"]["can_recover"] is True
        assert len(token) == 64

        response = await test_client.get(
            f"/api/v1/autosave/recover/{token}", headers=auth_headers
        )
        assert response.json()["data"]["project_id"] == project_id

        response = await test_client.get(
            f"/api/v1/autosave/recover/{token}", headers=other_headers
        )
        assert response.status_code == 404

    @pytest.mark.integration
    async def test_settings_and_clear(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str
    ) -> None:
        await autosave(test_client, auth_headers, project_id, ARTICLE)

        response = await test_client.put(
            url(project_id, "settings"),
            json={"autosave_enabled": False, "save_frequency": 60},
            headers=auth_headers,
        )
        assert response.json()["data"] == {
            "autosave_enabled": False,
            "save_frequency": 60,
            "is_recoverable": False,
        }
        response = await test_client.get(url(project_id, "recover"), headers=auth_headers)
        assert response.status_code == 404

        bad = await test_client.put(
            url(project_id, "settings"), json={"save_frequency": 1}, headers=auth_headers
        )
        assert bad.status_code == 400

        response = await test_client.delete(url(project_id, "autosave"), headers=auth_headers)
        assert response.status_code == 200
        response = await test_client.delete(url(project_id, "autosave"), headers=auth_headers)
        assert response.status_code == 404

    @pytest.mark.integration
    async def test_foreign_project(
        self, test_client: AsyncClient, other_headers: dict, project_id: str
    ) -> None:
        response = await autosave(test_client, other_headers, project_id, ARTICLE)
        assert response.status_code == 404


class TestHistory:
    @pytest_asyncio.fixture
    async def versions(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str
    ) -> None:
        await autosave(test_client, auth_headers, project_id, ARTICLE)
        await autosave(
            test_client, auth_headers, project_id, {**ARTICLE, "headline": "Bye", "image": "a"}
        )
        await test_client.post(
            url(project_id, "save"),
            json={"draft_content": {"@type": "FAQPage"}},
            headers=auth_headers,
        )

    @pytest.mark.integration
    async def test_history_newest_first(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str, versions
    ) -> None:
        response = await test_client.get(
            url(project_id, "history"), params={"limit": 2}, headers=auth_headers
        )
        data = response.json()["data"]

        assert data["total"] == 3
        assert data["current_version"] == 3
        assert [d["version"] for d in data["history"]] == [3, 2]
        assert data["history"][0]["tags"] == ["manual"]

    @pytest.mark.integration
    async def test_restore(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str, versions
    ) -> None:
        response = await test_client.post(url(project_id, "restore/1"), headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["message"] == "Restored to version 1"
        assert response.json()["data"]["current_draft"]["content"] == ARTICLE

        project = await test_client.get(f"/api/v1/projects/{project_id}", headers=auth_headers)
        assert project.json()["data"]["current_draft"]["version"] == 1
        assert project.json()["data"]["history_count"] == 3

        missing = await test_client.post(url(project_id, "restore/9"), headers=auth_headers)
        assert missing.status_code == 404

    @pytest.mark.integration
    async def test_compare(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str, versions
    ) -> None:
        response = await test_client.get(url(project_id, "compare/1/2"), headers=auth_headers)
        data = response.json()["data"]

        assert data["changed"] is True
        assert data["changes"] == {"added": ["image"], "removed": [], "modified": ["headline"]}

        missing = await test_client.get(url(project_id, "compare/1/7"), headers=auth_headers)
        assert missing.status_code == 404
        assert missing.json()["error"]["details"]["versions"] == [7]

    @pytest.mark.integration
    async def test_tag_and_search(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str, versions
    ) -> None:
        response = await test_client.post(
            url(project_id, "tag/2"), json={"tags": ["Published"]}, headers=auth_headers
        )
        assert response.json()["data"] == {"version": 2, "tags": ["auto", "published"]}

        response = await test_client.get(
            url(project_id, "search"),
            params={"tags": "published,seo", "content": "bye"},
            headers=auth_headers,
        )
        data = response.json()["data"]
        assert data["count"] == 1
        assert data["results"][0]["version"] == 2
        assert data["query"] == {"tags": ["published", "seo"], "content": "bye"}

        response = await test_client.get(
            url(project_id, "search"),
            params={"date_from": "2000-01-01T00:00:00Z"},
            headers=auth_headers,
        )
        assert response.json()["data"]["count"] == 3

        response = await test_client.get(
            url(project_id, "search"), params={"date_to": "yesterday"}, headers=auth_headers
        )
        assert response.status_code == 400

    @pytest.mark.integration
    async def test_stats(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str, versions
    ) -> None:
        response = await test_client.get(url(project_id, "stats"), headers=auth_headers)
        stats = response.json()["data"]

        assert stats["total_versions"] == 3
        assert stats["auto_versions"] == 2
        assert stats["manual_versions"] == 1
        assert stats["unique_authors"] == 1

    @pytest.mark.integration
    async def test_export_json(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str, versions
    ) -> None:
        response = await test_client.get(
            url(project_id, "export"),
            params={"versions": "1,3", "include_content": "false"},
            headers=auth_headers,
        )
        rows = response.json()["data"]

        assert [r["version"] for r in rows] == [1, 3]
        assert "content" not in rows[0]

        bad = await test_client.get(
            url(project_id, "export"), params={"versions": "1,x"}, headers=auth_headers
        )
        assert bad.status_code == 400

    @pytest.mark.integration
    async def test_export_csv(
        self, test_client: AsyncClient, auth_headers: dict, project_id: str, versions
    ) -> None:
        response = await test_client.get(
            url(project_id, "export"), params={"format": "csv"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"] == (
            f'attachment; filename="project-{project_id}-versions.csv"'
        )
        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert [r["version"] for r in rows] == ["1", "2", "3"]
        assert rows[2]["tags"] == "manual"
        assert '"@type":"FAQPage"' in rows[2]["content"]
