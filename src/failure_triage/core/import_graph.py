"""Cached import graph over the analyzed source tree.

The graph maps every source file to the project files it imports and the
files that import it. It answers "which specs transitively depend on this
file" for change-based test selection.

Cache validity is deliberately probabilistic: a cache younger than the
maximum age is trusted once a bounded sample of its nodes still has an
unchanged modification time. Edits to files outside the sample go unnoticed
until the cache ages out or a rebuild is forced.
"""

from __future__ import annotations

import hashlib
import json
import posixpath
import re
import time
from collections import deque
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from failure_triage.config.schema import AnalysisConfig, PathsConfig
from failure_triage.models.graph import GraphNode, GraphStats
from failure_triage.utils.fs import iter_source_files, read_text, to_relative

log = structlog.get_logger()

GRAPH_SCHEMA_VERSION = 1
GRAPH_CACHE_FILE = "import-graph.json"


class ImportResolver:
    """Extracts project-local import specifiers and resolves them to files.

    External packages are ignored; only relative specifiers and the source
    alias (``@/`` by default) are followed.
    """

    IMPORT_PATTERN = re.compile(r"""(?:import|from)\s+['"]([^'"]+)['"]""")
    DYNAMIC_IMPORT_PATTERN = re.compile(r"""import\s*\(\s*['"]([^'"]+)['"]\s*\)""")
    REQUIRE_PATTERN = re.compile(r"""require\s*\(\s*['"]([^'"]+)['"]\s*\)""")

    RESOLVE_SUFFIXES = (
        ".ts",
        ".tsx",
        ".js",
        ".jsx",
        ".cjs",
        ".mjs",
        "/index.ts",
        "/index.tsx",
        "/index.js",
    )

    def __init__(
        self,
        root: Path,
        alias_prefix: str = "@/",
        alias_target: str = "src",
        extensions: Iterable[str] = (".ts", ".tsx", ".js", ".jsx", ".cjs", ".mjs"),
    ) -> None:
        self._root = root
        self._alias_prefix = alias_prefix
        self._alias_target = alias_target.rstrip("/") + "/"
        self._extensions = tuple(extensions)

    def specifiers(self, content: str) -> list[str]:
        """Every import specifier in ``content``, in source order."""
        found: list[str] = []
        for pattern in (self.IMPORT_PATTERN, self.DYNAMIC_IMPORT_PATTERN, self.REQUIRE_PATTERN):
            found.extend(match.group(1) for match in pattern.finditer(content))
        return found

    def resolve(self, specifier: str, importer: str) -> str | None:
        """Repo-relative path of an imported project file.

        Args:
            specifier: Import string as written
            importer: Repo-relative path of the importing file

        Returns:
            Resolved path, or None for packages and unresolvable imports
        """
        if specifier.startswith(self._alias_prefix):
            candidate = self._alias_target + specifier[len(self._alias_prefix) :]
        elif specifier.startswith("."):
            candidate = posixpath.join(posixpath.dirname(importer), specifier)
        else:
            return None

        candidate = posixpath.normpath(candidate)
        if candidate.startswith("../") or candidate == "..":
            return None

        if candidate.endswith(self._extensions):
            return candidate

        for suffix in self.RESOLVE_SUFFIXES:
            if (self._root / (candidate + suffix)).is_file():
                return candidate + suffix
        return None

    def imports_of(self, content: str, importer: str) -> list[str]:
        """Resolved, de-duplicated project imports of one file."""
        resolved: list[str] = []
        for specifier in self.specifiers(content):
            target = self.resolve(specifier, importer)
            if target is not None and target not in resolved:
                resolved.append(target)
        return resolved


class ImportGraph:
    """File-level import graph with an on-disk cache.

    Nodes are keyed by repo-relative path; cycles are allowed and every
    traversal carries a visited set and a depth bound.

    Example:
        graph = ImportGraph(config.paths, config.analysis)
        graph.build()
        specs = graph.get_affected_tests(["src/services/user.ts"])
    """

    SPEC_PATTERN = re.compile(r"\.spec\.(ts|cjs)$")

    def __init__(
        self,
        paths: PathsConfig,
        analysis: AnalysisConfig | None = None,
        cache_file: Path | None = None,
    ) -> None:
        """Initialize the graph.

        Args:
            paths: Project and cache locations
            analysis: Depth, cache age and sampling settings
            cache_file: Overrides ``<cache_dir>/import-graph.json``
        """
        self._paths = paths
        self._analysis = analysis or AnalysisConfig()
        self._root = paths.root
        self._cache_file = cache_file or paths.cache_path / GRAPH_CACHE_FILE
        self._resolver = ImportResolver(
            self._root,
            alias_prefix=paths.alias_prefix,
            alias_target=paths.src_dir,
            extensions=self._analysis.extensions,
        )
        self._nodes: dict[str, GraphNode] = {}
        self._generated: str | None = None
        self._stats: GraphStats | None = None

    @property
    def resolver(self) -> ImportResolver:
        return self._resolver

    @property
    def nodes(self) -> dict[str, GraphNode]:
        return self._nodes

    @property
    def stats(self) -> GraphStats | None:
        return self._stats

    @property
    def is_built(self) -> bool:
        return self._stats is not None

    def build(self, force_rebuild: bool = False) -> dict[str, GraphNode]:
        """Load the cached graph if still valid, otherwise rescan the tree.

        Args:
            force_rebuild: Ignore any cached graph

        Returns:
            Mapping of repo-relative path to node
        """
        if not force_rebuild:
            cached = self._load_cache()
            if cached is not None and self.is_cache_valid(cached):
                self._adopt(cached)
                log.debug("import_graph_cache_hit", files=len(self._nodes))
                return self._nodes

        start = time.monotonic()
        files = list(
            iter_source_files(self._root, self._paths.source_dirs, self._analysis.extensions)
        )
        with ThreadPoolExecutor(max_workers=self._analysis.scan_workers) as pool:
            parsed = list(pool.map(self._parse_file, files))

        nodes = {node.file: node for node in parsed if node is not None}
        self._link_reverse(nodes)

        build_ms = int((time.monotonic() - start) * 1000)
        self._nodes = nodes
        self._generated = datetime.now(UTC).isoformat()
        self._stats = GraphStats(
            total_files=len(nodes),
            total_edges=sum(len(node.imports) for node in nodes.values()),
            build_time_ms=build_ms,
        )
        self._save_cache()

        log.info(
            "import_graph_built",
            files=self._stats.total_files,
            edges=self._stats.total_edges,
            build_time_ms=build_ms,
        )
        return self._nodes

    def ensure_built(self) -> None:
        if not self.is_built:
            self.build()

    def is_cache_valid(self, cache: dict[str, Any]) -> bool:
        """Age check, then a bounded modification-time sample."""
        if cache.get("schema_version") != GRAPH_SCHEMA_VERSION:
            return False
        try:
            generated = datetime.fromisoformat(cache["generated"])
        except (KeyError, TypeError, ValueError):
            return False

        age = (datetime.now(UTC) - generated).total_seconds()
        if age > self._analysis.graph_cache_max_age:
            log.debug("import_graph_cache_expired", age_seconds=int(age))
            return False

        nodes = list((cache.get("nodes") or {}).values())
        for node in nodes[: self._analysis.graph_sample_size]:
            path = self._root / node.get("file", "")
            try:
                mtime_ms = path.stat().st_mtime * 1000
            except OSError:
                return False
            if mtime_ms > float(node.get("last_modified", 0)):
                log.debug("import_graph_cache_stale", file=node.get("file"))
                return False
        return True

    def invalidate(self) -> None:
        """Drop the in-memory graph and the cache file."""
        self._nodes = {}
        self._stats = None
        self._generated = None
        self._cache_file.unlink(missing_ok=True)

    def get_dependents(self, file_path: str | Path, max_depth: int | None = None) -> list[str]:
        """Files that transitively import ``file_path``."""
        return self._walk(file_path, "imported_by", max_depth)

    def get_dependencies(self, file_path: str | Path, max_depth: int | None = None) -> list[str]:
        """Files that ``file_path`` transitively imports."""
        return self._walk(file_path, "imports", max_depth)

    def get_affected_tests(self, changed_files: Iterable[str | Path]) -> list[str]:
        """Spec files that are, or depend on, any changed file.

        Returns:
            Sorted, de-duplicated spec paths
        """
        affected: set[str] = set()
        for changed in changed_files:
            relative = to_relative(changed, self._root)
            if self.SPEC_PATTERN.search(relative):
                affected.add(relative)
            affected.update(
                dep for dep in self.get_dependents(relative) if self.SPEC_PATTERN.search(dep)
            )
        return sorted(affected)

    def format_compact(self) -> str:
        """``FILES:n|EDGES:n|TIME:nms`` or ``NO_CACHE``."""
        if self._stats is None:
            return "NO_CACHE"
        return (
            f"FILES:{self._stats.total_files}|EDGES:{self._stats.total_edges}"
            f"|TIME:{self._stats.build_time_ms}ms"
        )

    def _walk(self, file_path: str | Path, edge: str, max_depth: int | None) -> list[str]:
        """Breadth-first closure along one edge direction."""
        limit = self._analysis.max_graph_depth if max_depth is None else max_depth
        start = to_relative(file_path, self._root)
        visited: set[str] = {start}
        found: list[str] = []
        queue: deque[tuple[str, int]] = deque([(start, 0)])

        while queue:
            current, depth = queue.popleft()
            if depth >= limit:
                continue
            node = self._nodes.get(current)
            if node is None:
                continue
            for neighbour in sorted(getattr(node, edge)):
                if neighbour not in visited:
                    visited.add(neighbour)
                    found.append(neighbour)
                    queue.append((neighbour, depth + 1))

        return found

    def _parse_file(self, path: Path) -> GraphNode | None:
        content = read_text(path)
        if content is None:
            return None
        try:
            mtime_ms = path.stat().st_mtime * 1000
        except OSError:
            return None

        relative = to_relative(path, self._root)
        return GraphNode(
            file=relative,
            content_hash=hashlib.md5(
                content.encode("utf-8"), usedforsecurity=False
            ).hexdigest()[:8],
            last_modified=mtime_ms,
            imports=set(self._resolver.imports_of(content, relative)),
        )

    @staticmethod
    def _link_reverse(nodes: dict[str, GraphNode]) -> None:
        for file, node in nodes.items():
            for imported in node.imports:
                target = nodes.get(imported)
                if target is not None:
                    target.imported_by.add(file)

    def _adopt(self, cache: dict[str, Any]) -> None:
        self._nodes = {
            key: GraphNode.from_dict(value) for key, value in cache.get("nodes", {}).items()
        }
        stats = cache.get("stats", {})
        self._generated = cache.get("generated")
        self._stats = GraphStats(
            total_files=int(stats.get("total_files", len(self._nodes))),
            total_edges=int(stats.get("total_edges", 0)),
            build_time_ms=int(stats.get("build_time_ms", 0)),
        )

    def _load_cache(self) -> dict[str, Any] | None:
        if not self._cache_file.is_file():
            return None
        try:
            data = json.loads(self._cache_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.warning("import_graph_cache_unreadable", path=str(self._cache_file), error=str(e))
            return None
        return data if isinstance(data, dict) else None

    def _save_cache(self) -> None:
        assert self._stats is not None
        document = {
            "schema_version": GRAPH_SCHEMA_VERSION,
            "generated": self._generated,
            "root_dir": str(self._root),
            "nodes": {key: node.to_dict() for key, node in sorted(self._nodes.items())},
            "stats": {
                "total_files": self._stats.total_files,
                "total_edges": self._stats.total_edges,
                "build_time_ms": self._stats.build_time_ms,
            },
        }
        try:
            self._cache_file.parent.mkdir(parents=True, exist_ok=True)
            self._cache_file.write_text(json.dumps(document, indent=2), encoding="utf-8")
        except OSError as e:
            log.warning("import_graph_cache_write_failed", path=str(self._cache_file), error=str(e))
