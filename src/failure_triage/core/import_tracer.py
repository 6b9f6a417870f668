"""Import chain tracing from a failing file to browser-incompatible code."""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path, PurePosixPath

import structlog
from cachetools import LRUCache

from failure_triage.config.schema import AnalysisConfig, PathsConfig
from failure_triage.core.import_graph import ImportResolver
from failure_triage.models.graph import ChainNode, ImportChain
from failure_triage.models.test_result import StackFrame
from failure_triage.utils.fs import iter_source_files, read_text, to_relative

log = structlog.get_logger()

# Code that must never reach the client bundle.
PROBLEMATIC_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"AppDataSource\.getRepository"),
    re.compile(r"new\s+\w+Repository\(\)"),
    re.compile(r"export\s+const\s+\w+Service\s*=\s*new"),
    re.compile(r"export\s+const\s+\w+\s*=\s*new\s+\w+Service"),
    re.compile(r"module\.createRequire"),
    re.compile(r"""require\s*\(\s*['"]typeorm['"]\s*\)"""),
    re.compile(r"""from\s+['"]typeorm['"]"""),
)

DEV_SERVER_URL = re.compile(r"^https?://[^/]+/(.+)$")


class ImportTracer:
    """Follows imports depth-first until a problematic module is reached.

    A trace never raises: a missing start file, an exhausted search or the
    depth cap all produce ``found=False`` with the partial chain.

    Example:
        tracer = ImportTracer(config.paths, config.analysis)
        chain = tracer.trace("src/pages/Dashboard.tsx")
        print(tracer.format_chain(chain))
    """

    def __init__(
        self,
        paths: PathsConfig,
        analysis: AnalysisConfig | None = None,
        resolver: ImportResolver | None = None,
    ) -> None:
        analysis = analysis or AnalysisConfig()
        self._paths = paths
        self._root = paths.root
        self._src_dir = paths.src_dir.rstrip("/")
        self._extensions = tuple(analysis.extensions)
        self._max_depth = analysis.max_trace_depth
        self._resolver = resolver or ImportResolver(
            self._root,
            alias_prefix=paths.alias_prefix,
            alias_target=paths.src_dir,
            extensions=self._extensions,
        )
        self._content_cache: LRUCache[str, str] = LRUCache(maxsize=analysis.tracer_cache_size)
        self._import_cache: LRUCache[str, tuple[str, ...]] = LRUCache(
            maxsize=analysis.tracer_cache_size
        )

    def trace(self, start_file: str | Path, target_pattern: str | None = None) -> ImportChain:
        """Trace imports from ``start_file``.

        Args:
            start_file: Repo-relative or absolute path
            target_pattern: Regex that also ends the trace when a file matches

        Returns:
            ImportChain; the last node is the root cause when ``found``
        """
        start = to_relative(start_file, self._root)
        resolved = self._resolve_existing(start)
        if resolved is None:
            return ImportChain(
                start_file=start,
                chain=(),
                found=False,
                target_pattern=target_pattern,
                error=f"File not found: {start}",
            )

        target = re.compile(target_pattern) if target_pattern else None
        chain: list[ChainNode] = []
        visited: set[str] = set()
        found = self._descend(resolved, 0, target, chain, visited)

        log.debug(
            "import_trace_complete",
            start_file=start,
            found=found,
            files_visited=len(chain),
        )
        return ImportChain(
            start_file=start,
            chain=tuple(chain),
            found=found,
            target_pattern=target_pattern,
        )

    def trace_from_stack(self, frames: Sequence[StackFrame]) -> ImportChain:
        """Trace from the innermost application frame of a stack.

        Frames under the source directory win; dev-server URLs
        (``http://host/src/...``) are the fallback.
        """
        local = [f for f in frames if not DEV_SERVER_URL.match(f.file_path)]
        served = [f for f in frames if DEV_SERVER_URL.match(f.file_path)]
        for frame in local + served:
            path = self.repo_path(frame)
            if path is not None:
                return self.trace(path)

        return ImportChain(
            start_file="unknown",
            chain=(),
            found=False,
            error="Could not extract file from stack trace",
        )

    def repo_path(self, frame: StackFrame) -> str | None:
        """Repo-relative source path of an application frame, else None."""
        if frame.is_node_modules:
            return None
        marker = f"{self._src_dir}/"
        url = DEV_SERVER_URL.match(frame.file_path)
        if url:
            path = url.group(1).split("?")[0]
            return path if path.startswith(marker) else None

        relative = to_relative(frame.file_path, self._root)
        if relative.startswith(marker):
            return relative
        index = relative.find(f"/{marker}")
        return relative[index + 1 :] if index >= 0 else None

    def find_importers(self, target_file: str | Path) -> list[str]:
        """Files under the source directory that directly import ``target_file``."""
        target = to_relative(target_file, self._root)
        importers = []
        for path in iter_source_files(self._root, [self._src_dir], self._extensions):
            relative = to_relative(path, self._root)
            if target in self._imports(relative):
                importers.append(relative)
        return importers

    def find_problematic_files(self, directory: str | None = None) -> list[str]:
        """Files containing any problematic pattern."""
        found = []
        for path in iter_source_files(self._root, [directory or self._src_dir], self._extensions):
            relative = to_relative(path, self._root)
            content = self._read(relative)
            if content and self.problematic_patterns(content):
                found.append(relative)
        return found

    @staticmethod
    def problematic_patterns(content: str) -> tuple[str, ...]:
        """Source of every problematic pattern present in ``content``."""
        return tuple(p.pattern for p in PROBLEMATIC_PATTERNS if p.search(content))

    def clear_caches(self) -> None:
        self._content_cache.clear()
        self._import_cache.clear()

    def format_chain(self, chain: ImportChain) -> str:
        """``ROOT: file (pattern)``, ``NO_CHAIN`` or ``ERR: msg``."""
        if not chain.found and chain.error:
            return f"ERR: {chain.error}"
        if not chain.chain:
            return "NO_CHAIN"

        node = next((n for n in chain.chain if n.has_target_import), None)
        if node is not None:
            reason = (
                node.problematic_exports[0] if node.problematic_exports else chain.target_pattern
            )
            return f"ROOT: {PurePosixPath(node.file).name} ({reason})"
        return f"CHAIN: {len(chain.chain)} files analyzed"

    def _descend(
        self,
        file: str,
        depth: int,
        target: re.Pattern[str] | None,
        chain: list[ChainNode],
        visited: set[str],
    ) -> bool:
        if depth >= self._max_depth or file in visited:
            return False
        visited.add(file)

        content = self._read(file)
        if content is None:
            return False

        imports = self._imports(file)
        problematic = self.problematic_patterns(content)
        hit_target = bool(target and target.search(content))
        chain.append(
            ChainNode(
                file=file,
                imports=imports,
                depth=depth,
                has_target_import=bool(problematic) or hit_target,
                problematic_exports=problematic,
            )
        )
        if hit_target or problematic:
            return True

        return any(self._descend(imp, depth + 1, target, chain, visited) for imp in imports)

    def _imports(self, file: str) -> tuple[str, ...]:
        cached = self._import_cache.get(file)
        if cached is not None:
            return cached
        content = self._read(file)
        imports = tuple(self._resolver.imports_of(content, file)) if content else ()
        self._import_cache[file] = imports
        return imports

    def _read(self, file: str) -> str | None:
        cached = self._content_cache.get(file)
        if cached is not None:
            return cached
        content = read_text(self._root / file)
        if content is not None:
            self._content_cache[file] = content
        return content

    def _resolve_existing(self, file: str) -> str | None:
        if (self._root / file).is_file():
            return file
        for suffix in ImportResolver.RESOLVE_SUFFIXES:
            if (self._root / (file + suffix)).is_file():
                return file + suffix
        return None
