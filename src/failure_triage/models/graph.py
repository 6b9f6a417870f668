"""Data models for the import graph and import traces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class GraphNode:
    """One source file in the import graph.

    ``imports`` is filled on the scan pass, ``imported_by`` on the reverse
    pass. Paths are repo-relative with forward slashes.
    """

    file: str
    content_hash: str
    last_modified: float  # milliseconds since epoch
    imports: set[str] = field(default_factory=set)
    imported_by: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "imports": sorted(self.imports),
            "imported_by": sorted(self.imported_by),
            "hash": self.content_hash,
            "last_modified": self.last_modified,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GraphNode:
        return cls(
            file=data["file"],
            content_hash=data.get("hash", ""),
            last_modified=float(data.get("last_modified", 0)),
            imports=set(data.get("imports", ())),
            imported_by=set(data.get("imported_by", ())),
        )


@dataclass(frozen=True)
class GraphStats:
    """Size and build cost of a graph."""

    total_files: int
    total_edges: int
    build_time_ms: int


@dataclass(frozen=True)
class ChainNode:
    """A file visited while tracing imports."""

    file: str
    imports: tuple[str, ...]
    depth: int
    has_target_import: bool = False
    problematic_exports: tuple[str, ...] = ()

    @property
    def is_problematic(self) -> bool:
        return bool(self.problematic_exports)


@dataclass(frozen=True)
class ImportChain:
    """Path taken by one trace, root cause last when ``found``."""

    start_file: str
    chain: tuple[ChainNode, ...]
    found: bool
    target_pattern: str | None = None
    error: str | None = None

    @property
    def root(self) -> ChainNode | None:
        """The node that ended the trace, if the trace succeeded."""
        if not self.found or not self.chain:
            return None
        return self.chain[-1]

    @property
    def files(self) -> tuple[str, ...]:
        return tuple(node.file for node in self.chain)
