"""Configuration management for the content index using Hydra.

All configuration is loaded from YAML files in conf/content_index/.
This module provides typed config objects and validation.
"""

from pathlib import Path

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field

from content_index.analytics import AnalyticsConfig
from content_index.chunking import ChunkingConfig
from content_index.embedding import EmbeddingConfig
from content_index.generation import GenerationConfig


class IndexConfig(BaseModel):
    """Flat index persistence and indexing pipeline configuration.

    Attributes:
        data_dir: Directory holding the snapshot, document map and build record
        snapshot_file: Vector snapshot file name
        map_file: Document map file name
        meta_file: Build record file name
        persist_chunk_text: Store chunk text inline in the document map
        batch_size: Chunks embedded per batch before appending
        concurrency: Concurrent embedding calls within a batch
        lock_timeout: Seconds to wait for the snapshot file lock
    """

    data_dir: str = "data/index"
    snapshot_file: str = "vector_index.json"
    map_file: str = "doc_mapping.json"
    meta_file: str = "index_meta.json"
    persist_chunk_text: bool = False
    batch_size: int = Field(default=32, ge=1, le=1000)
    concurrency: int = Field(default=4, ge=1, le=64)
    lock_timeout: float = Field(default=30.0, gt=0.0)


class PointStoreConfig(BaseModel):
    """Label point store configuration.

    Attributes:
        backend: "memory" or "qdrant"
        url: Qdrant URL
        api_key: Qdrant API key
        namespace: Prefix of label collections ("{namespace}-{field}")
    """

    backend: str = Field(default="memory", pattern="^(memory|qdrant)$")
    url: str | None = None
    api_key: str | None = None
    namespace: str = "content"

    def collection_name(self, field: str) -> str:
        return f"{self.namespace}-{field}"


class ContentIndexConfig(BaseModel):
    """Top-level configuration for the content index.

    Attributes:
        chunking: Text chunking configuration
        embedding: Embedding model configuration
        generation: Text generation model configuration
        index: Flat index configuration
        point_store: Label point store configuration
        analytics: Aggregate report configuration
    """

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    point_store: PointStoreConfig = Field(default_factory=PointStoreConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> ContentIndexConfig:
    """Load content index configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/content_index/)
        overrides: List of config overrides (e.g., ["chunking.chunk_size=80"])

    Returns:
        Validated configuration object

    Example:
        >>> config = load_config("default")
        >>> config.embedding.model
        'ollama/all-minilm:l6-v2'

        >>> config = load_config("default", overrides=["embedding.version=v2"])
        >>> config.embedding.version
        'v2'
    """
    if config_path is None:
        repo_root = Path(__file__).parent.parent.parent
        config_path = repo_root / "conf" / "content_index"

    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    with initialize_config_dir(
        config_dir=str(config_path), version_base=None, job_name="content_index"
    ):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    config_dict = OmegaConf.to_container(cfg, resolve=True)
    return ContentIndexConfig(**config_dict)  # type: ignore


def create_default_config() -> dict[str, dict[str, object]]:
    """Create a default configuration dictionary for bootstrapping.

    Returns:
        Dictionary suitable for writing to YAML
    """
    return {
        "chunking": {
            "chunk_size": 50,
            "max_words": 30,
        },
        "embedding": {
            "model": "ollama/all-minilm:l6-v2",
            "version": "v1",
            "dimensions": 384,
            "base_url": "${oc.env:OLLAMA_API_URL,http://localhost:11434}",
            "batch_size": 100,
            "max_attempts": 5,
            "shrink_factor": 0.8,
            "timeout_seconds": 30.0,
            "backoff_seconds": 1.0,
            "api_key": None,
        },
        "generation": {
            "model": "${oc.env:OLLAMA_MODEL,llama3.2}",
            "base_url": "${oc.env:OLLAMA_API_URL,http://localhost:11434}",
            "temperature": 0.3,
            "max_retries": 3,
            "timeout_seconds": 30.0,
        },
        "index": {
            "data_dir": "data/index",
            "snapshot_file": "vector_index.json",
            "map_file": "doc_mapping.json",
            "meta_file": "index_meta.json",
            "persist_chunk_text": False,
            "batch_size": 32,
            "concurrency": 4,
            "lock_timeout": 30.0,
        },
        "point_store": {
            "backend": "memory",
            "url": "${oc.env:QDRANT_URL,http://localhost:6333}",
            "api_key": None,
            "namespace": "content",
        },
        "analytics": {
            "top_k": 5,
            "pair_limit": 5,
            "frequent_label_limit": 20,
            "min_contribution_chars": 20,
        },
    }
