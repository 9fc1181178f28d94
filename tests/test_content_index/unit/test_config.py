"""Unit tests for configuration loading.

Tests cover:
- Hydra config loading from YAML
- Environment variable interpolation
- Config validation
- Override mechanism
"""

import pytest

from content_index.chunking import ChunkingConfig
from content_index.config import (
    ContentIndexConfig,
    IndexConfig,
    PointStoreConfig,
    create_default_config,
    load_config,
)


class TestConfigCreation:
    """Tests for default config creation."""

    def test_create_default_config(self) -> None:
        config_dict = create_default_config()

        assert config_dict["chunking"]["chunk_size"] == 50
        assert config_dict["chunking"]["max_words"] == 30
        assert config_dict["embedding"]["model"] == "ollama/all-minilm:l6-v2"
        assert config_dict["point_store"]["backend"] == "memory"

    def test_default_config_has_all_sections(self) -> None:
        config_dict = create_default_config()

        required_sections = [
            "chunking",
            "embedding",
            "generation",
            "index",
            "point_store",
            "analytics",
        ]
        assert all(section in config_dict for section in required_sections)


class TestConfigModels:
    """Tests for config model validation."""

    def test_point_store_backend(self) -> None:
        PointStoreConfig(backend="memory")
        PointStoreConfig(backend="qdrant", url="http://localhost:6333")

        with pytest.raises(ValueError):
            PointStoreConfig(backend="pinecone")

    def test_collection_name(self) -> None:
        assert PointStoreConfig(namespace="blog").collection_name("interests") == "blog-interests"

    def test_index_batch_size(self) -> None:
        IndexConfig(batch_size=32)

        with pytest.raises(ValueError):
            IndexConfig(batch_size=0)

    def test_sections_default(self) -> None:
        config = ContentIndexConfig(embedding={"model": "ollama/x", "dimensions": 8})
        assert config.chunking == ChunkingConfig()
        assert config.index.snapshot_file == "vector_index.json"
        assert config.analytics.top_k == 5


class TestConfigLoading:
    """Tests for loading config from Hydra YAML."""

    def test_load_default_config(self, conf_dir) -> None:
        config = load_config("default", conf_dir)

        assert isinstance(config, ContentIndexConfig)
        assert config.chunking == ChunkingConfig(chunk_size=50, max_words=30)
        assert config.embedding.model == "ollama/all-minilm:l6-v2"
        assert config.embedding.dimensions == 384
        assert config.embedding.base_url == "http://localhost:11434"
        assert config.index.map_file == "doc_mapping.json"
        assert config.point_store.backend == "memory"

    def test_default_path(self) -> None:
        """Without a path the repo's conf/content_index/ directory is used."""
        assert load_config("default").chunking.chunk_size == 50

    def test_overrides(self, conf_dir) -> None:
        config = load_config(
            "default", conf_dir, overrides=["chunking.chunk_size=80", "embedding.version=v2"]
        )

        assert config.chunking.chunk_size == 80
        assert config.embedding.version == "v2"

    def test_env_interpolation(self, conf_dir, monkeypatch) -> None:
        monkeypatch.setenv("OLLAMA_API_URL", "http://models:11434")
        monkeypatch.setenv("OLLAMA_MODEL", "mistral")

        config = load_config("default", conf_dir)

        assert config.embedding.base_url == "http://models:11434"
        assert config.generation.base_url == "http://models:11434"
        assert config.generation.model == "mistral"

    def test_openai_profile(self, conf_dir, monkeypatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        config = load_config("openai", conf_dir)

        assert config.embedding.model == "openai/text-embedding-3-small"
        assert config.embedding.dimensions == 1536
        assert config.embedding.api_key == "sk-test"
        assert config.point_store.backend == "qdrant"
        assert config.point_store.api_key is None
        # Unchanged sections come from the default profile
        assert config.chunking.max_words == 30

    def test_qdrant_profile(self, conf_dir, monkeypatch) -> None:
        monkeypatch.setenv("QDRANT_URL", "http://qdrant:6333")

        config = load_config("qdrant", conf_dir)

        assert config.point_store.backend == "qdrant"
        assert config.point_store.url == "http://qdrant:6333"
        assert config.embedding.model == "ollama/all-minilm:l6-v2"

    def test_missing_config_dir(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError, match="Config directory not found"):
            load_config("default", tmp_path / "missing")
