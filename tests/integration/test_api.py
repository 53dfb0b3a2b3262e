"""Integration tests for the Quart HTTP layer."""

import httpx
import pytest

from brandkb.container import AppContainer
from brandkb.main import create_app
from brandkb.ollama_client import OllamaClient

EMBEDDING_MODEL = "mxbai-embed-large:latest"


def _ollama(models):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in models]})
        return httpx.Response(404)

    return OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


@pytest.fixture
def container(tmp_path, documents_dir, stub_provider) -> AppContainer:
    return AppContainer(
        db_path=tmp_path / "api" / "knowledge.sqlite",
        documents_dir=documents_dir,
        provider=stub_provider,
        ollama_client=_ollama([EMBEDDING_MODEL]),
        embedding_model=EMBEDDING_MODEL,
    )


@pytest.fixture
def client(container):
    return create_app(container).test_client()


class TestKnowledgeEndpoints:
    @pytest.mark.asyncio
    async def test_status_before_ingestion(self, client) -> None:
        response = await client.get("/api/knowledge/status")
        data = await response.get_json()

        assert response.status_code == 200
        assert data["initialized"] is False
        assert data["total_records"] == 0
        assert "not initialized" in data["message"]

    @pytest.mark.asyncio
    async def test_ingest_then_status(self, client) -> None:
        response = await client.post("/api/knowledge/ingest", json={})
        data = await response.get_json()

        assert response.status_code == 200
        assert data["success"] is True
        assert len(data["results"]) == 4
        assert data["unmatched_files"] == ["meeting_notes.txt"]
        assert data["store"]["total_records"] == data["aggregate_stats"]["embeddings_stored"]

        status = await (await client.get("/api/knowledge/status")).get_json()
        assert status["initialized"] is True
        assert "ready" in status["message"]
        assert status["by_source_tag"]["style_guide"] >= 1

    @pytest.mark.asyncio
    async def test_ingest_without_body(self, client) -> None:
        response = await client.post("/api/knowledge/ingest")

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_reingest_keeps_counts_stable(self, client) -> None:
        first = await (await client.post("/api/knowledge/ingest", json={"re_ingest": True})).get_json()
        second = await (await client.post("/api/knowledge/ingest", json={"re_ingest": True})).get_json()

        assert first["store"]["total_records"] == second["store"]["total_records"]

    @pytest.mark.asyncio
    async def test_ingest_missing_directory(self, client) -> None:
        response = await client.post("/api/knowledge/ingest", json={"directory": "nope"})
        data = await response.get_json()

        assert response.status_code == 404
        assert data["error_type"] == "NotFoundError"

    @pytest.mark.asyncio
    async def test_ingest_subdirectory(self, client, documents_dir) -> None:
        campaign = documents_dir / "campaign"
        campaign.mkdir()
        (campaign / "example_autumn.txt").write_text("Autumn launch post about coffee.", encoding="utf-8")

        response = await client.post("/api/knowledge/ingest", json={"directory": "campaign"})
        data = await response.get_json()

        assert response.status_code == 200
        assert [r["file_name"] for r in data["results"]] == ["example_autumn.txt"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("directory", ["../secrets", "{secrets}", "campaign/../../secrets"])
    async def test_ingest_rejects_directory_outside_documents(
        self, client, tmp_path, stub_provider, directory
    ) -> None:
        secrets = tmp_path / "secrets"
        secrets.mkdir()
        (secrets / "passwords.txt").write_text("tone brand voice admin password hunter2", encoding="utf-8")

        response = await client.post(
            "/api/knowledge/ingest",
            json={"directory": directory.format(secrets=secrets)},
        )
        data = await response.get_json()

        assert response.status_code == 400
        assert data["error_type"] == "ConfigError"
        assert stub_provider.calls == []

        status = await (await client.get("/api/knowledge/status")).get_json()
        assert status["total_records"] == 0

    @pytest.mark.asyncio
    async def test_ingest_rejects_unknown_source_tag(self, client) -> None:
        response = await client.post("/api/knowledge/ingest", json={"source_tag": "blog"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_search(self, client) -> None:
        await client.post("/api/knowledge/ingest", json={})

        response = await client.post(
            "/api/knowledge/search",
            json={"query": "friendly tone", "min_similarity": 0.0, "top_k": 2},
        )
        data = await response.get_json()

        assert response.status_code == 200
        assert 1 <= data["count"] <= 2
        assert "tone" in data["results"][0]["text"]
        assert data["results"][0]["source_file"] == "brand_style_guide.md"
        similarities = [r["similarity"] for r in data["results"]]
        assert similarities == sorted(similarities, reverse=True)

    @pytest.mark.asyncio
    async def test_search_with_tag_filter(self, client) -> None:
        await client.post("/api/knowledge/ingest", json={})

        response = await client.post(
            "/api/knowledge/search",
            json={"query": "coffee", "min_similarity": 0.0, "source_tags": ["example_post"]},
        )
        data = await response.get_json()

        assert data["count"] >= 1
        assert {r["source_tag"] for r in data["results"]} == {"example_post"}

    @pytest.mark.asyncio
    async def test_search_validation(self, client) -> None:
        missing = await client.post("/api/knowledge/search", json={})
        bad_top_k = await client.post("/api/knowledge/search", json={"query": "tone", "top_k": 0})

        assert missing.status_code == 400
        assert bad_top_k.status_code == 400
        data = await missing.get_json()
        assert data["details"][0]["loc"] == ["query"]

    @pytest.mark.asyncio
    async def test_search_provider_failure(self, client, stub_provider) -> None:
        stub_provider.fail_on_text = "tone"

        response = await client.post("/api/knowledge/search", json={"query": "tone"})
        data = await response.get_json()

        assert response.status_code == 502
        assert data["error"].startswith("[stub]")

    @pytest.mark.asyncio
    async def test_context(self, client) -> None:
        await client.post("/api/knowledge/ingest", json={})

        response = await client.post(
            "/api/knowledge/context",
            json={
                "content_summary": "new coffee launch",
                "content_type": "post",
                "platform": "LinkedIn",
                "post_type": "launch announcement",
            },
        )
        data = await response.get_json()

        assert response.status_code == 200
        assert set(data) == {"guidelines", "examples", "formatted_context"}
        assert isinstance(data["formatted_context"], str)
        assert data["formatted_context"]

    @pytest.mark.asyncio
    async def test_context_validation(self, client) -> None:
        response = await client.post("/api/knowledge/context", json={"content_type": "post"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_delete_file(self, client) -> None:
        await client.post("/api/knowledge/ingest", json={})

        response = await client.delete("/api/knowledge/files/example_posts.txt")
        data = await response.get_json()

        assert response.status_code == 200
        assert data["deleted"] >= 1

        status = await (await client.get("/api/knowledge/status")).get_json()
        assert "example_posts.txt" not in status["by_source_file"]

        again = await (await client.delete("/api/knowledge/files/example_posts.txt")).get_json()
        assert again["deleted"] == 0


class TestHealth:
    @pytest.mark.asyncio
    async def test_live(self, client) -> None:
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert (await response.get_json()) == {"status": "alive"}

    @pytest.mark.asyncio
    async def test_ready(self, client) -> None:
        response = await client.get("/health/ready")
        data = await response.get_json()

        assert response.status_code == 200
        assert data["ollama"] and data["model"] and data["store"]

    @pytest.mark.asyncio
    async def test_not_ready_without_model(self, tmp_path, documents_dir, stub_provider) -> None:
        container = AppContainer(
            db_path=tmp_path / "api" / "knowledge.sqlite",
            documents_dir=documents_dir,
            provider=stub_provider,
            ollama_client=_ollama(["llama3:latest"]),
            embedding_model=EMBEDDING_MODEL,
        )
        client = create_app(container).test_client()

        response = await client.get("/health/ready")
        data = await response.get_json()

        assert response.status_code == 503
        assert data["model"] is False
        assert EMBEDDING_MODEL in data["error"]

    @pytest.mark.asyncio
    async def test_unknown_route(self, client) -> None:
        response = await client.get("/api/unknown")

        assert response.status_code == 404
        assert (await response.get_json()) == {"error": "Not found"}
