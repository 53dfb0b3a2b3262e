"""Quart application exposing ingestion and retrieval over HTTP."""
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError
from quart import Quart, jsonify, request

from brandkb import config
from brandkb.container import AppContainer
from brandkb.errors import (
    BrandKBError,
    ConfigError,
    MalformedInputError,
    NotFoundError,
    ProviderError,
    StoreError,
)
from brandkb.log_config import configure_logging
from brandkb.rag.store import SourceTag

logger = structlog.get_logger()


class IngestRequest(BaseModel):
    """Body of POST /api/knowledge/ingest."""

    re_ingest: bool = False
    directory: Optional[str] = None
    source_tag: Optional[SourceTag] = None
    concurrency: Optional[int] = Field(default=None, ge=1, le=16)


class SearchRequest(BaseModel):
    """Body of POST /api/knowledge/search."""

    query: str = Field(max_length=2000)
    top_k: Optional[int] = Field(default=None, ge=1, le=50)
    min_similarity: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    source_tags: Optional[List[SourceTag]] = None


class ContextRequest(BaseModel):
    """Body of POST /api/knowledge/context."""

    content_summary: str = Field(min_length=1, max_length=4000)
    content_type: str = Field(min_length=1)
    platform: str = Field(min_length=1)
    post_type: str = Field(min_length=1)
    max_chars: Optional[int] = Field(default=None, ge=1)


ERROR_STATUS = {
    NotFoundError: 404,
    ConfigError: 400,
    MalformedInputError: 400,
    ProviderError: 502,
    StoreError: 503,
}


def _status_for(error: BrandKBError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


async def _json_body() -> dict:
    return await request.get_json(silent=True) or {}


def _resolve_directory(documents_dir: Path, directory: Optional[str]) -> Path:
    """Resolve a requested directory, confined to the documents directory.

    Relative paths are taken from ``documents_dir``.

    Raises:
        ConfigError: If the path falls outside ``documents_dir``
    """
    root = Path(documents_dir).resolve()
    if not directory:
        return root

    resolved = (root / directory).resolve()
    if resolved != root and root not in resolved.parents:
        logger.warning("ingest_directory_rejected", directory=directory, documents_dir=str(root))
        raise ConfigError(f"Directory must be inside the documents directory: {directory}")
    return resolved


def create_app(container: Optional[AppContainer] = None) -> Quart:
    """Create the Quart application.

    Args:
        container: Wired collaborators (default AppContainer() from config)

    Returns:
        Configured Quart app
    """
    configure_logging()

    app = Quart(__name__)
    container = container or AppContainer()
    app.config["CONTAINER"] = container

    @app.route("/api/knowledge/ingest", methods=["POST"])
    async def ingest():
        """Ingest every document in the documents directory.

        Expects JSON body (all optional):
        {
            "re_ingest": false,
            "directory": "subfolder",
            "source_tag": "style_guide",
            "concurrency": 1
        }
        """
        body = IngestRequest.model_validate(await _json_body())
        directory = _resolve_directory(container.documents_dir, body.directory)

        logger.info(
            "ingest_request_received",
            directory=str(directory),
            re_ingest=body.re_ingest,
        )

        result = await container.ingest_pipeline.ingest_directory(
            directory,
            source_tag=body.source_tag,
            re_ingest=body.re_ingest,
            concurrency=body.concurrency,
        )
        debug_info = await container.retriever.get_debug_info()

        return jsonify({**result.to_dict(), "store": debug_info})

    @app.route("/api/knowledge/status", methods=["GET"])
    async def status():
        """Report what the knowledge store holds."""
        info = await container.retriever.get_debug_info()
        info["message"] = (
            "Brand voice knowledge base is initialized and ready"
            if info["initialized"]
            else "Brand voice knowledge base not initialized - please ingest documents"
        )
        return jsonify(info)

    @app.route("/api/knowledge/search", methods=["POST"])
    async def search():
        """Similarity search over stored records.

        Expects JSON body:
        {
            "query": "tone of voice for announcements",
            "top_k": 5,                       // optional
            "min_similarity": 0.7,            // optional
            "source_tags": ["style_guide"]    // optional
        }
        """
        body = SearchRequest.model_validate(await _json_body())

        results = await container.retriever.retrieve_context(
            body.query,
            top_k=body.top_k,
            min_similarity=body.min_similarity,
            source_tags=body.source_tags,
        )

        return jsonify({
            "results": [r.to_dict() for r in results],
            "count": len(results),
        })

    @app.route("/api/knowledge/context", methods=["POST"])
    async def context():
        """Guidelines and examples for a piece of content, formatted for a prompt."""
        body = ContextRequest.model_validate(await _json_body())
        retriever = container.retriever

        result = await retriever.get_comprehensive_context(
            content_summary=body.content_summary,
            content_type=body.content_type,
            platform=body.platform,
            post_type=body.post_type,
        )
        payload = result.to_dict()
        if body.max_chars is not None:
            payload["formatted_context"] = retriever.format_for_prompt(
                [*result.guidelines, *result.examples], max_chars=body.max_chars
            )

        return jsonify(payload)

    @app.route("/api/knowledge/files/<source_file>", methods=["DELETE"])
    async def delete_file(source_file: str):
        """Delete every record ingested from one file."""
        deleted = await container.store.delete_by_file(source_file)
        logger.info("file_records_deleted", source_file=source_file, count=deleted)
        return jsonify({"source_file": source_file, "deleted": deleted})

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - check if app can serve requests.

        Checks:
        - Ollama service is reachable
        - Embedding model is available
        - Knowledge store is readable
        """
        checks = {
            "status": "healthy",
            "ollama": False,
            "model": False,
            "store": False,
        }

        try:
            models = await container.ollama_client.list_models()
            checks["ollama"] = True

            if container.embedder.model in models:
                checks["model"] = True
            else:
                checks["status"] = "unhealthy"
                checks["error"] = f"Missing embedding model: {container.embedder.model}"

            await container.store.stats()
            checks["store"] = True

        except Exception as e:
            logger.error("health_check_failed", error=str(e), error_type=type(e).__name__)
            checks["status"] = "unhealthy"
            checks["error"] = str(e)

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(ValidationError)
    async def validation_error(error: ValidationError):
        details = [
            {"loc": list(err["loc"]), "msg": err["msg"]} for err in error.errors()
        ]
        logger.warning("request_validation_failed", errors=details)
        return jsonify({"error": "Invalid request body", "details": details}), 400

    @app.errorhandler(BrandKBError)
    async def pipeline_error(error: BrandKBError):
        status_code = _status_for(error)
        logger.error(
            "request_failed",
            error=str(error),
            error_type=type(error).__name__,
            status_code=status_code,
        )
        return jsonify({"error": str(error), "error_type": type(error).__name__}), status_code

    @app.errorhandler(404)
    async def not_found(error):
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    logger.info("app_created", documents_dir=str(container.documents_dir))

    return app


if __name__ == "__main__":
    create_app().run(host=config.HOST, port=config.PORT)
