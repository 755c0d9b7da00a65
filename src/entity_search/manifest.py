"""Manifest tracking for persisted vector stores.

Stores a compact record next to the persisted chunk table: the fixed vector
dimensionality, the per-entity id sequence counters, and the embedding version
that produced the vectors. Callers use it to decide whether the persisted
vectors can be reused or must be cleared because the embedding model changed.
"""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from entity_search.config import SemanticSearchConfig


class StoreManifest(BaseModel):
    """Persisted store bookkeeping.

    Attributes:
        dimensions: Vector dimensionality fixed by the first add (None while empty)
        sequences: Next sequence number per "{entity_type}:{entity_id}" key
        embedding_version: Embedding version of the stored vectors
        config_fingerprint: Fingerprint of the config that built the store
        updated_at: Time of the last write
    """

    dimensions: int | None = Field(default=None, ge=1)
    sequences: dict[str, int] = Field(default_factory=dict)
    embedding_version: str | None = None
    config_fingerprint: str | None = None
    updated_at: datetime | None = None


def _safe_subset(config: SemanticSearchConfig) -> dict[str, Any]:
    """Extract a deterministic, non-secret subset of configuration for hashing."""
    return {
        "chunking": {
            "chunk_size": config.chunking.chunk_size,
            "overlap": config.chunking.overlap,
            "strategy": config.chunking.strategy,
            "tokenizer": config.chunking.tokenizer,
        },
        "embedding": {
            "model": config.embedding.model,
            "version": config.embedding.version,
            "dimensions": config.embedding.dimensions,
        },
    }


def compute_config_fingerprint(config: SemanticSearchConfig) -> str:
    """Compute a stable fingerprint for the current configuration.

    Returns a hex-encoded SHA256 hash of a canonical JSON representation
    of a secret-free subset of the configuration.
    """
    subset = _safe_subset(config)
    payload = json.dumps(subset, sort_keys=True, separators=(",", ":")).encode()
    return hashlib.sha256(payload).hexdigest()


def load_manifest(path: Path) -> StoreManifest | None:
    """Load manifest from path if it exists, else return None.

    Raises:
        ValueError: If the file exists but is not a valid manifest
    """
    if not path.exists():
        return None
    try:
        return StoreManifest.model_validate_json(path.read_text())
    except ValidationError as e:
        raise ValueError(f"Corrupt store manifest at {path}: {e}") from e


def save_manifest(path: Path, manifest: StoreManifest) -> None:
    """Persist manifest to path (create parent directory if needed)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    manifest.updated_at = datetime.now(UTC)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(manifest.model_dump_json(indent=2))
    tmp_path.replace(path)


def should_rebuild(
    manifest: StoreManifest, embedding_version: str, fingerprint: str | None = None
) -> bool:
    """Return True if the persisted vectors cannot be reused with the current config.

    An empty store never needs a rebuild; it simply adopts the new version.
    """
    if manifest.dimensions is None:
        return False
    if manifest.embedding_version is not None and manifest.embedding_version != embedding_version:
        return True
    if (
        fingerprint is not None
        and manifest.config_fingerprint is not None
        and manifest.config_fingerprint != fingerprint
    ):
        return True
    return False
