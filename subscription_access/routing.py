"""
Permission routing: (path, verb) -> required {module, submodule, permission}.

Paths are normalized (scheme, host, query and fragment dropped; first N
segments kept) and matched against a segment trie built once at startup.
The deepest pattern carrying an entry for the verb wins, so resolution does
not depend on table order. A path with no entry is unrestricted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from .models import PERMISSION_KINDS, PermissionRequirement

logger = logging.getLogger(__name__)

DEFAULT_TABLE_PATH = Path(__file__).with_name("permissions.json")
DEFAULT_PATH_DEPTH = 3

RouteTable = Mapping[str, Mapping[str, PermissionRequirement]]


def split_path(url: str) -> List[str]:
    """Path segments of a URL or path, without scheme, host, query or fragment."""
    raw = str(url or "").strip()
    path = urlsplit(raw).path
    return [segment for segment in path.split("/") if segment]


def normalize_path(url: str, depth: int = DEFAULT_PATH_DEPTH) -> Tuple[str, ...]:
    """Keep the first `depth` segments so trailing resource IDs are ignored."""
    if depth < 1:
        raise ValueError("depth must be at least 1")
    return tuple(split_path(url)[:depth])


def contains_segments(path: Iterable[str], endpoint: Iterable[str]) -> bool:
    """True if `endpoint` occurs as a contiguous run of segments in `path`."""
    haystack = list(path)
    needle = list(endpoint)
    if not needle:
        return False
    size = len(needle)
    return any(haystack[i : i + size] == needle for i in range(len(haystack) - size + 1))


@dataclass
class _TrieNode:
    children: Dict[str, "_TrieNode"] = field(default_factory=dict)
    verbs: Dict[str, PermissionRequirement] = field(default_factory=dict)


class PermissionResolver:
    """Longest-prefix permission lookup keyed by normalized path segments."""

    def __init__(self, table: RouteTable, *, depth: int = DEFAULT_PATH_DEPTH) -> None:
        if depth < 1:
            raise ValueError("depth must be at least 1")
        self._depth = depth
        self._root = _TrieNode()
        self._size = 0
        for pattern, verbs in table.items():
            segments = split_path(pattern)
            if not segments:
                raise ValueError(f"route pattern must contain at least one segment: {pattern!r}")
            if len(segments) > depth:
                raise ValueError(f"route pattern {pattern!r} is deeper than path depth {depth}")
            node = self._root
            for segment in segments:
                node = node.children.setdefault(segment, _TrieNode())
            for verb, requirement in verbs.items():
                node.verbs[verb.strip().upper()] = requirement
                self._size += 1

    def __len__(self) -> int:
        return self._size

    @property
    def depth(self) -> int:
        return self._depth

    def resolve(self, path: str, verb: str) -> Optional[PermissionRequirement]:
        method = (verb or "GET").strip().upper()
        node = self._root
        best: Optional[PermissionRequirement] = None
        for segment in normalize_path(path, self._depth):
            node = node.children.get(segment)
            if node is None:
                break
            requirement = node.verbs.get(method)
            if requirement is not None:
                best = requirement
        return best

    @classmethod
    def from_json(cls, path: Optional[str] = None, *, depth: int = DEFAULT_PATH_DEPTH) -> "PermissionResolver":
        config_path = Path(path) if path else DEFAULT_TABLE_PATH
        with config_path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        table = parse_route_table(raw)
        logger.info("Loaded permission routing table", extra={"path": str(config_path), "routes": len(table)})
        return cls(table, depth=depth)


def table_depth(table: RouteTable) -> int:
    """Segment count of the deepest pattern; the smallest usable path depth."""
    return max((len(split_path(pattern)) for pattern in table), default=1)


@lru_cache(maxsize=None)
def bundled_table_depth() -> int:
    with DEFAULT_TABLE_PATH.open("r", encoding="utf-8") as handle:
        return table_depth(parse_route_table(json.load(handle)))


def parse_route_table(raw: object) -> Dict[str, Dict[str, PermissionRequirement]]:
    """Validate {"routes": {pattern: {VERB: {module, submodule, permission}}}}."""
    if not isinstance(raw, dict):
        raise ValueError("permission table must contain a top-level object")
    routes = raw.get("routes")
    if not isinstance(routes, dict) or not routes:
        raise ValueError("permission table must include a non-empty object field named 'routes'")

    table: Dict[str, Dict[str, PermissionRequirement]] = {}
    for pattern, verbs in routes.items():
        if not isinstance(pattern, str) or not pattern.strip():
            raise ValueError("each route pattern must be a non-empty string")
        if not isinstance(verbs, dict) or not verbs:
            raise ValueError(f"route '{pattern}' must map verbs to requirements")

        entries: Dict[str, PermissionRequirement] = {}
        for verb, spec in verbs.items():
            if not isinstance(spec, dict):
                raise ValueError(f"route '{pattern}' {verb} must be an object")
            module = str(spec.get("module", "")).strip()
            submodule = str(spec.get("submodule", "")).strip()
            permission = str(spec.get("permission", "")).strip().lower()
            if not module or not submodule:
                raise ValueError(f"route '{pattern}' {verb} requires module and submodule")
            if permission not in PERMISSION_KINDS:
                raise ValueError(f"route '{pattern}' {verb} has invalid permission: {permission!r}")
            entries[str(verb).strip().upper()] = PermissionRequirement(module, submodule, permission)
        table[pattern.strip()] = entries

    return table
