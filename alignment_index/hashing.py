"""
alignment_index.hashing — Deterministic serialization and digests.

Published artifacts are serialized in one canonical form so that a rerun on
identical raw input is byte-identical, and so that the digest recorded in
GAISUM can be recomputed from the file on disk.

Design contract:
    - canonical_json() is the ONLY serializer for published files.
    - Form: sort_keys=True, 2-space indent, UTF-8 (ensure_ascii=False),
      trailing newline, NaN/Infinity rejected.
    - compute_run_hash() depends only on (path, digest) pairs, in path order.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Mapping


def canonical_json(data: Any) -> str:
    """Serialize to the canonical published form."""
    return json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True, allow_nan=False) + "\n"


def canonical_bytes(data: Any) -> bytes:
    return canonical_json(data).encode("utf-8")


def sha256_bytes(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def sha256_file(filepath: Path) -> str:
    """SHA-256 hex digest of a file, streamed in 64 KiB chunks."""
    h = hashlib.sha256()
    with open(filepath, "rb") as fh:
        while True:
            chunk = fh.read(65536)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def compute_run_hash(digests: Mapping[str, str]) -> str:
    """Hash of a run's artifacts from their per-file digests.

    Input lines are "path=digest", sorted by path, newline-terminated.
    """
    if not digests:
        raise ValueError("digests is empty")
    parts = [f"{path}={digests[path]}" for path in sorted(digests)]
    return hashlib.sha256(("\n".join(parts) + "\n").encode("utf-8")).hexdigest()
