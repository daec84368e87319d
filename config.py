# config.py
# Environment-driven settings for the coating defect diagnostics service.

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from errors import ConfigurationError

VECTOR_BACKENDS = ("none", "memory", "qdrant")
RATIONALE_BACKENDS = ("none", "ollama", "anthropic")
OBJECT_STORE_BACKENDS = ("none", "local", "s3")


def _backend(name: str, default: str, allowed) -> str:
    value = (os.environ.get(name, default) or "none").strip().lower()
    if value not in allowed:
        raise ConfigurationError(
            f"{name}={value!r} is not supported (choose one of: {', '.join(allowed)})"
        )
    return value


def _number(name: str, default, cast=float):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return cast(raw)


@dataclass(frozen=True)
class Settings:
    service_name: str = "coating-defect-diagnostics"

    vector_index: str = "none"
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str = ""
    qdrant_collection: str = "coating_sops"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    vector_top_k: int = 3

    rationale_backend: str = "ollama"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "gemma2:9b"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"

    object_store: str = "none"
    object_store_dir: str = "./object_store"
    s3_bucket: str = ""
    aws_region: str = "us-east-1"

    external_timeout: float = 10.0
    rationale_timeout: float = 60.0

    port: int = 5002
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Read settings once from the environment (and a local .env file)."""
    load_dotenv()

    return Settings(
        service_name=os.environ.get("SERVICE_NAME", "coating-defect-diagnostics"),
        vector_index=_backend("VECTOR_INDEX", "none", VECTOR_BACKENDS),
        qdrant_url=os.environ.get("QDRANT_URL", "http://localhost:6333"),
        qdrant_api_key=os.environ.get("QDRANT_API_KEY", ""),
        qdrant_collection=os.environ.get("QDRANT_COLLECTION", "coating_sops"),
        embedding_model=os.environ.get(
            "EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"
        ),
        vector_top_k=max(1, _number("VECTOR_TOP_K", 3, int)),
        rationale_backend=_backend("RATIONALE_BACKEND", "ollama", RATIONALE_BACKENDS),
        ollama_url=os.environ.get("OLLAMA_URL", "http://localhost:11434"),
        ollama_model=os.environ.get("OFFLINE_LLM_MODEL", "gemma2:9b"),
        anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
        anthropic_model=os.environ.get("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
        object_store=_backend("OBJECT_STORE", "none", OBJECT_STORE_BACKENDS),
        object_store_dir=os.environ.get("OBJECT_STORE_DIR", "./object_store"),
        s3_bucket=os.environ.get("S3_BUCKET", ""),
        aws_region=os.environ.get("AWS_REGION", "us-east-1"),
        external_timeout=_number("EXTERNAL_TIMEOUT", 10.0),
        rationale_timeout=_number("RATIONALE_TIMEOUT", 60.0),
        port=_number("PORT", 5002, int),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
