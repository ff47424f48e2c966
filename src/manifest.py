"""
Manifest Loader - Reads desired resources from YAML or JSON files.

A manifest is either a list of entries or a mapping with a "resources"
list. Each entry names a kind, a resource name unique per kind, and the
desired spec. A null value in a spec leaves that attribute unmanaged.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from policy import ABSENT

logger = logging.getLogger(__name__)


class ManifestError(ValueError):
    """Raised when a manifest file cannot be parsed."""


@dataclass
class ManifestEntry:
    """One desired resource from a manifest."""

    kind: str
    name: str
    spec: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.name}"


def _parse_entry(raw: Any, position: int) -> ManifestEntry:
    if not isinstance(raw, dict):
        raise ManifestError(f"Entry {position}: expected a mapping")

    missing = [k for k in ("kind", "name") if not raw.get(k)]
    if missing:
        raise ManifestError(f"Entry {position}: missing {', '.join(missing)}")

    spec = raw.get("spec") or {}
    if not isinstance(spec, dict):
        raise ManifestError(f"Entry {position}: spec must be a mapping")

    return ManifestEntry(
        kind=str(raw["kind"]),
        name=str(raw["name"]),
        spec={k: (ABSENT if v is None else v) for k, v in spec.items()},
    )


def parse_manifest(document: Any) -> List[ManifestEntry]:
    """
    Build manifest entries from a parsed document.

    Raises:
        ManifestError: If the document is malformed or names an entry twice.
    """
    if isinstance(document, dict):
        document = document.get("resources")
    if document is None:
        return []
    if not isinstance(document, list):
        raise ManifestError("Manifest must be a list of resources")

    entries = [_parse_entry(raw, i) for i, raw in enumerate(document)]

    seen = set()
    for entry in entries:
        if entry.key in seen:
            raise ManifestError(f"Duplicate resource {entry.key}")
        seen.add(entry.key)
    return entries


def load_manifest(path: Union[str, Path]) -> List[ManifestEntry]:
    """
    Load a manifest file. Files ending in .json are read as JSON, anything
    else as YAML.

    Raises:
        ManifestError: If the file cannot be parsed.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix == ".json":
            document = json.loads(text)
        else:
            document = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ManifestError(f"Cannot parse {path}: {e}") from e

    entries = parse_manifest(document)
    logger.info(f"Loaded {len(entries)} resource(s) from {path}")
    return entries
