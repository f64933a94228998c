"""Pipeline configuration: defaults, an optional JSON config file, then environment."""

import json
import os
import logging
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "./config/stembot.json"


@dataclass
class LLMConfig:
    """Text-understanding service settings."""
    provider: str = "ollama"  # "ollama" or "openai"
    model: str = "llama3.2:3b"
    base_url: str = "http://localhost:11434"
    api_key: str = ""
    timeout: float = 30.0
    retry_attempts: int = 2
    temperature: float = 0.0


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""
    provider: str = "openai"  # "openai" or "local"
    model: str = "text-embedding-3-small"
    dimensions: int = 384
    batch_size: int = 100
    max_tokens: int = 8191
    timeout: float = 30.0
    embed_full_text: bool = False
    local_model: str = "all-MiniLM-L6-v2"


@dataclass
class VectorStoreConfig:
    """Configuration for the FAISS-backed vector store."""
    enabled: bool = True
    index_path: str = "./vector_index"


@dataclass
class PipelineConfig:
    """Stage limits and relationship-discovery tuning."""
    structure_prefix_chars: int = 8000
    classification_prefix_chars: int = 2000
    analysis_prefix_chars: int = 12000
    summary_prefix_chars: int = 1000
    full_text_prefix_chars: int = 8000
    relationship_excerpt_chars: int = 2000
    relationship_threshold: float = 0.7
    relationship_top_k: int = 10
    max_file_size_mb: float = 10.0
    ocr_max_width: int = 2000
    ocr_language: str = "eng"
    checkpoint_dir: str = "./checkpoints"
    checkpoints_enabled: bool = True
    max_concurrent_documents: int = 4


@dataclass
class Settings:
    llm: LLMConfig = field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    log_level: str = "INFO"
    json_logs: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "LLM_PROVIDER": ("llm", "provider"),
    "LLM_MODEL": ("llm", "model"),
    "OLLAMA_BASE_URL": ("llm", "base_url"),
    "OLLAMA_DEFAULT_MODEL": ("llm", "model"),
    "LLM_TIMEOUT": ("llm", "timeout"),
    "LLM_RETRY_ATTEMPTS": ("llm", "retry_attempts"),
    "EMBED_PROVIDER": ("embedding", "provider"),
    "EMBED_MODEL": ("embedding", "model"),
    "EMBED_DIMENSIONS": ("embedding", "dimensions"),
    "EMBED_BATCH_SIZE": ("embedding", "batch_size"),
    "EMBED_FULL_TEXT": ("embedding", "embed_full_text"),
    "LOCAL_EMBEDDING_MODEL": ("embedding", "local_model"),
    "VECTOR_STORE_ENABLED": ("vector_store", "enabled"),
    "VECTOR_INDEX_PATH": ("vector_store", "index_path"),
    "RELATIONSHIP_THRESHOLD": ("pipeline", "relationship_threshold"),
    "RELATIONSHIP_TOP_K": ("pipeline", "relationship_top_k"),
    "MAX_FILE_SIZE_MB": ("pipeline", "max_file_size_mb"),
    "CHECKPOINT_DIR": ("pipeline", "checkpoint_dir"),
    "CHECKPOINTS_ENABLED": ("pipeline", "checkpoints_enabled"),
    "MAX_CONCURRENT_DOCUMENTS": ("pipeline", "max_concurrent_documents"),
    "LOG_LEVEL": (None, "log_level"),
    "JSON_LOGS": (None, "json_logs"),
}


def _coerce(value: Any, current: Any) -> Any:
    """Convert a raw config value to the type of the current default."""
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return str(value)


def _apply(settings: Settings, section: Optional[str], name: str, value: Any) -> None:
    target = getattr(settings, section) if section else settings
    if not hasattr(target, name):
        logger.warning(f"Ignoring unknown setting {section + '.' if section else ''}{name}")
        return
    setattr(target, name, _coerce(value, getattr(target, name)))


def _merge_file(settings: Settings, file_config: Dict[str, Any]) -> None:
    section_names = {f.name for f in fields(Settings)}
    for key, value in file_config.items():
        if isinstance(value, dict) and key in section_names:
            for name, nested in value.items():
                _apply(settings, key, name, nested)
        else:
            _apply(settings, None, key, value)


def load_settings(config_file: Optional[str] = None) -> Settings:
    """
    Build settings from defaults, a JSON config file and the environment.

    Args:
        config_file: Path to a JSON config file (defaults to STEMBOT_CONFIG_FILE
            or ./config/stembot.json when present)

    Returns:
        Settings instance
    """
    settings = Settings()

    path = Path(config_file or os.getenv("STEMBOT_CONFIG_FILE", DEFAULT_CONFIG_FILE))
    if path.exists():
        try:
            with open(path, "r") as f:
                _merge_file(settings, json.load(f))
            logger.info(f"Configuration loaded from {path}")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load config file {path}: {e}, using defaults")
    elif config_file:
        logger.warning(f"Config file not found: {path}, using defaults")

    for env_key, (section, name) in ENV_OVERRIDES.items():
        raw = os.getenv(env_key)
        if raw is not None and raw != "":
            _apply(settings, section, name, raw)

    # API keys only ever come from the environment
    if settings.llm.provider == "openai":
        settings.llm.api_key = os.getenv("OPENAI_API_KEY", settings.llm.api_key)

    return settings


def save_settings(settings: Settings, config_file: str = DEFAULT_CONFIG_FILE) -> str:
    """Persist settings (minus secrets) as JSON."""
    path = Path(config_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = settings.to_dict()
    data["llm"]["api_key"] = ""
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    logger.info(f"Configuration saved to {path}")
    return str(path)


def validate_settings(settings: Settings) -> Dict[str, Any]:
    """Validate current configuration."""
    validation = {
        "valid": True,
        "issues": [],
        "warnings": []
    }

    if settings.llm.provider not in ("ollama", "openai"):
        validation["issues"].append(f"Unknown LLM provider: {settings.llm.provider}")
        validation["valid"] = False

    if settings.embedding.provider not in ("openai", "local"):
        validation["issues"].append(f"Unknown embedding provider: {settings.embedding.provider}")
        validation["valid"] = False

    needs_openai_key = "openai" in (settings.llm.provider, settings.embedding.provider)
    if needs_openai_key and not os.getenv("OPENAI_API_KEY"):
        validation["warnings"].append("OPENAI_API_KEY not set (required for OpenAI providers)")

    if settings.embedding.dimensions < 1:
        validation["issues"].append("embedding.dimensions must be a positive integer")
        validation["valid"] = False

    threshold = settings.pipeline.relationship_threshold
    if not 0.0 < threshold < 1.0:
        validation["issues"].append("pipeline.relationship_threshold must be between 0 and 1")
        validation["valid"] = False

    if settings.pipeline.relationship_top_k < 1:
        validation["issues"].append("pipeline.relationship_top_k must be a positive integer")
        validation["valid"] = False

    if settings.llm.timeout <= 0:
        validation["issues"].append("llm.timeout must be positive")
        validation["valid"] = False

    if not settings.vector_store.enabled:
        validation["warnings"].append("Vector store disabled: relationships will not be discovered")

    return validation
