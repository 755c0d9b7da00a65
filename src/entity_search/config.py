"""Configuration management for the semantic search engine using Hydra.

All configuration is loaded from YAML files in conf/entity_search/.
This module provides typed config objects and validation.
"""

from pathlib import Path

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field

from entity_search.chunking import ChunkingConfig
from entity_search.embedding import EmbeddingConfig
from entity_search.indexing import FailurePolicy


class StoreConfig(BaseModel):
    """Vector store configuration.

    Attributes:
        backend: Store backend ("memory" or "parquet")
        path: Directory for the persistent table (parquet only)
        table_name: File stem for the table and its manifest
        lock_timeout_seconds: File lock acquisition timeout
        rebuild_on_version_change: Clear persisted vectors when the embedding version changes
    """

    backend: str = Field(default="memory", pattern="^(memory|parquet)$")
    path: str | None = None
    table_name: str = "chunks"
    lock_timeout_seconds: float = Field(default=30.0, gt=0.0)
    rebuild_on_version_change: bool = True


class IndexingConfig(BaseModel):
    """Entity indexing configuration.

    Attributes:
        failure_policy: "best_effort" keeps chunks stored before a failure,
            "atomic" rolls them back
    """

    failure_policy: FailurePolicy = FailurePolicy.BEST_EFFORT


class SearchConfig(BaseModel):
    """Search defaults.

    Attributes:
        default_limit: Number of entities returned when no limit is given
        min_similarity: Optional similarity floor applied after grouping
    """

    default_limit: int = Field(default=5, ge=1, le=100)
    min_similarity: float | None = Field(default=None, ge=-1.0, le=1.0)


class QueryConfig(BaseModel):
    """Query façade configuration.

    Attributes:
        debounce_seconds: Delay before a submitted query runs; newer submissions cancel it
    """

    debounce_seconds: float = Field(default=0.3, ge=0.0, le=10.0)


class SemanticSearchConfig(BaseModel):
    """Top-level configuration for the semantic search engine.

    Attributes:
        chunking: Text chunking configuration
        embedding: Embedding model configuration
        store: Vector store configuration
        indexing: Entity indexing configuration
        search: Search defaults
        query: Query façade configuration
    """

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig
    store: StoreConfig = Field(default_factory=StoreConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> SemanticSearchConfig:
    """Load semantic search configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/entity_search/)
        overrides: List of config overrides (e.g., ["store.backend=parquet"])

    Returns:
        Validated configuration object

    Example:
        >>> config = load_config("default")
        >>> config.embedding.model
        'local/all-MiniLM-L6-v2'

        >>> config = load_config("default", overrides=["chunking.chunk_size=300"])
        >>> config.chunking.chunk_size
        300
    """
    if config_path is None:
        # Default to conf/entity_search/ relative to repo root
        repo_root = Path(__file__).parent.parent.parent
        config_path = repo_root / "conf" / "entity_search"

    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    with initialize_config_dir(
        config_dir=str(config_path), version_base=None, job_name="entity_search"
    ):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    # Convert OmegaConf to dict and validate with Pydantic
    config_dict = OmegaConf.to_container(cfg, resolve=True)
    return SemanticSearchConfig(**config_dict)  # type: ignore


def create_default_config() -> dict[str, dict[str, object]]:
    """Create a default configuration dictionary for bootstrapping.

    Returns:
        Dictionary suitable for writing to YAML

    Example:
        >>> import yaml
        >>> config = create_default_config()
        >>> with open("conf/entity_search/default.yaml", "w") as f:
        ...     yaml.dump(config, f)
    """
    return {
        "chunking": {
            "chunk_size": 500,
            "overlap": 100,
            "strategy": "window",
            "tokenizer": None,
        },
        "embedding": {
            "model": "local/all-MiniLM-L6-v2",
            "version": "v1",
            "dimensions": 384,
            "max_retries": 3,
            "timeout_seconds": 30.0,
            "api_key": "${oc.env:OPENAI_API_KEY,null}",
            "probe_text": "test",
        },
        "store": {
            "backend": "parquet",
            "path": "data/entity_search",
            "table_name": "chunks",
            "lock_timeout_seconds": 30.0,
            "rebuild_on_version_change": True,
        },
        "indexing": {"failure_policy": "best_effort"},
        "search": {"default_limit": 5, "min_similarity": None},
        "query": {"debounce_seconds": 0.3},
    }
