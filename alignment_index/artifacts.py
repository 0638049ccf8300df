"""
alignment_index.artifacts — All-or-nothing publication of run outputs.

Atomic protocol:
    1. Serialize every artifact in canonical form (in memory).
    2. Write each to a hidden temp file next to its destination
       (.tmp_<name>_<uuid>).
    3. Only after every write succeeded, os.replace() each temp file onto
       its destination.
    4. On any failure before step 3, every temp file is removed and the
       previously published files are untouched.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Mapping

from alignment_index.hashing import canonical_bytes, sha256_bytes

logger = logging.getLogger("gai.artifacts")


def _safe_destination(root: Path, relative: str) -> Path:
    destination = (root / relative).resolve()
    if root.resolve() not in destination.parents:
        raise ValueError(f"artifact path escapes output root: {relative!r}")
    return destination


def serialize_artifacts(artifacts: Mapping[str, Any]) -> dict[str, bytes]:
    """Canonical bytes per relative path, in path order."""
    return {path: canonical_bytes(artifacts[path]) for path in sorted(artifacts)}


def artifact_digests(serialized: Mapping[str, bytes]) -> dict[str, str]:
    return {path: sha256_bytes(content) for path, content in serialized.items()}


def publish_artifacts(root: Path, serialized: Mapping[str, bytes]) -> list[Path]:
    """Write every artifact or none of them. Returns the destination paths."""
    staged: list[tuple[Path, Path]] = []
    try:
        for relative, content in serialized.items():
            destination = _safe_destination(root, relative)
            destination.parent.mkdir(parents=True, exist_ok=True)
            temp = destination.with_name(f".tmp_{destination.name}_{uuid.uuid4().hex[:8]}")
            staged.append((temp, destination))
            with open(temp, "wb") as fh:
                fh.write(content)
    except BaseException:
        for temp, _ in staged:
            temp.unlink(missing_ok=True)
        raise

    for temp, destination in staged:
        os.replace(temp, destination)

    logger.info(json.dumps({
        "event": "artifacts_published",
        "count": len(staged),
        "paths": [str(dest.relative_to(root.resolve())) for _, dest in staged],
    }))
    return [destination for _, destination in staged]


def load_json(path: Path, default: Any = None) -> Any:
    """Read a JSON file, or return `default` when it does not exist."""
    if not path.is_file():
        return default
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def read_text(path: Path) -> str:
    with open(path, encoding="utf-8-sig") as fh:
        return fh.read()
