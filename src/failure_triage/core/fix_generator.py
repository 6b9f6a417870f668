"""Template-driven fix generation.

Regex templates rewrite a file rule by rule; the lazy-initialization
template is delegated to the singleton rewriter. Generated fixes carry the
file text they were computed from so the applier can refuse to write over a
file that changed in the meantime.
"""

from __future__ import annotations

import re
from importlib import resources
from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError

from failure_triage.config.schema import AnalysisConfig, PathsConfig
from failure_triage.core.errors import TemplateError
from failure_triage.core.lazy_init import LazyInitTransformer, find_singletons
from failure_triage.models.analysis import RootCauseAnalysis
from failure_triage.models.fix import (
    ChangeType,
    CodeChange,
    FixTemplate,
    GeneratedFix,
    ReplacementRule,
)
from failure_triage.utils.fs import iter_source_files, line_and_column, read_text, to_relative

log = structlog.get_logger()

LAZY_INIT_TEMPLATE = "lazy-initialization"

# Compatibility rule name -> template that addresses it.
RULE_TEMPLATES: dict[str, str] = {
    "TypeORM DataSource": "data-source-import",
    "Direct DataSource Import": "data-source-import",
    "Node.js createRequire": "dynamic-import",
    "Node.js fs module": "browser-guard",
    "Node.js path module": "browser-guard",
    "Node.js os module": "browser-guard",
    "Singleton Service Export": LAZY_INIT_TEMPLATE,
    "Direct Repository Construction": LAZY_INIT_TEMPLATE,
}

BACKREFERENCE = re.compile(r"\$(\d+)")
SERVED_SOURCE = re.compile(r"^https?://[^/]+/(.+)$")


def load_templates(path: Path | None = None) -> dict[str, FixTemplate]:
    """Load the template registry.

    Args:
        path: YAML file; the packaged registry when None

    Returns:
        Templates keyed by id, in file order

    Raises:
        TemplateError: If the file is missing, invalid or repeats an id
    """
    try:
        if path is None:
            text = (resources.files("failure_triage") / "data" / "fix_templates.yaml").read_text(
                encoding="utf-8"
            )
        else:
            text = path.read_text(encoding="utf-8")
        data = yaml.safe_load(text)
    except (OSError, yaml.YAMLError) as e:
        raise TemplateError(f"Could not load fix templates {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("templates"), list):
        raise TemplateError("Fix template registry must contain a 'templates' list")

    registry: dict[str, FixTemplate] = {}
    for entry in data["templates"]:
        try:
            template = FixTemplate.model_validate(entry)
        except ValidationError as e:
            raise TemplateError(f"Invalid fix template: {e}") from e
        if template.id in registry:
            raise TemplateError(f"Duplicate fix template id: {template.id}")
        for rule in (*template.patterns, *template.import_updates):
            try:
                re.compile(rule.match)
            except re.error as e:
                msg = f"Template {template.id} has an invalid rule {rule.match!r}: {e}"
                raise TemplateError(msg) from e
        registry[template.id] = template

    return registry


def expand_backreferences(replacement: str, match: re.Match[str]) -> str:
    """Substitute ``$1``..``$n``; unmatched groups expand to nothing."""

    def group(ref: re.Match[str]) -> str:
        index = int(ref.group(1))
        if index > (match.re.groups or 0):
            return ref.group(0)
        return match.group(index) or ""

    return BACKREFERENCE.sub(group, replacement)


class FixGenerator:
    """Turns root-cause analyses into concrete file rewrites.

    Example:
        generator = FixGenerator(config.paths)
        for fix in generator.generate_fixes(analysis):
            print(fix.file, len(fix.changes))
    """

    def __init__(
        self,
        paths: PathsConfig,
        templates: dict[str, FixTemplate] | None = None,
        templates_file: Path | None = None,
        analysis: AnalysisConfig | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            paths: Project layout; files are read relative to its root
            templates: Registry to use directly
            templates_file: YAML registry to load when ``templates`` is None
            analysis: Source extensions for directory scans
        """
        self._root = paths.root
        self._src_dir = paths.src_dir.rstrip("/")
        self._extensions = tuple((analysis or AnalysisConfig()).extensions)
        self._templates = templates if templates is not None else load_templates(templates_file)
        self._compiled: dict[str, list[tuple[re.Pattern[str], ReplacementRule]]] = {}
        self._transformers: dict[str, LazyInitTransformer] = {}
        for template in self._templates.values():
            if template.kind == "lazy_init":
                self._transformers[template.id] = LazyInitTransformer(template)

    def list_templates(self) -> list[FixTemplate]:
        return list(self._templates.values())

    def get_template(self, template_id: str) -> FixTemplate | None:
        return self._templates.get(template_id)

    @staticmethod
    def template_for_issue(rule_name: str) -> str | None:
        """Template id that addresses a compatibility rule, if any."""
        return RULE_TEMPLATES.get(rule_name)

    def generate_fixes(self, analysis: RootCauseAnalysis) -> list[GeneratedFix]:
        """Fixes for every file implicated by an analysis.

        Target files are the error file, problematic import-chain nodes and
        files with compatibility findings; only existing files are used.
        """
        best = analysis.pattern_match.best_match
        if best is None or not best.fix_template or best.fix_template not in self._templates:
            return []

        fixes = []
        for file in self._target_files(analysis):
            fix = self.generate_fix_by_template(file, best.fix_template)
            if fix is not None:
                fixes.append(fix)

        log.debug(
            "fixes_generated",
            template=best.fix_template,
            fixes=len(fixes),
        )
        return fixes

    def has_available_fixes(self, analysis: RootCauseAnalysis) -> bool:
        best = analysis.pattern_match.best_match
        if best is None or not best.fix_template or best.fix_template not in self._templates:
            return False
        return bool(self._target_files(analysis))

    def generate_fix_by_template(self, file: str | Path, template_id: str) -> GeneratedFix | None:
        """Apply one template to one file.

        Args:
            file: Repo-relative or absolute path
            template_id: Registry id

        Returns:
            GeneratedFix, or None when the file is unreadable or nothing matched

        Raises:
            TemplateError: If ``template_id`` is not registered
        """
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateError(f"Unknown fix template: {template_id}")

        relative = to_relative(file, self._root)
        content = read_text(self._root / relative)
        if content is None:
            return None

        transformer = self._transformers.get(template_id)
        if transformer is not None:
            return transformer.transform(relative, content)
        return self._apply_rules(relative, content, template)

    def scan_for_fixable_files(
        self, directory: str | None = None, template_id: str | None = None
    ) -> list[tuple[str, list[str]]]:
        """Files some template would change.

        Returns:
            ``(file, template ids)`` pairs in path order
        """
        if template_id is not None and template_id not in self._templates:
            raise TemplateError(f"Unknown fix template: {template_id}")
        wanted = [template_id] if template_id else list(self._templates)

        found = []
        for path in iter_source_files(self._root, [directory or self._src_dir], self._extensions):
            content = read_text(path)
            if content is None:
                continue
            matching = [tid for tid in wanted if self._template_matches(tid, content)]
            if matching:
                found.append((to_relative(path, self._root), matching))
        return found

    def _template_matches(self, template_id: str, content: str) -> bool:
        if template_id in self._transformers:
            return bool(find_singletons(content))
        return any(regex.search(content) for regex, _ in self._rules(self._templates[template_id]))

    def _apply_rules(self, file: str, content: str, template: FixTemplate) -> GeneratedFix | None:
        edits = self._collect_edits(content, self._rules(template), template.description)
        if not edits:
            return None
        edits += self._collect_edits(
            content, self._rules(template, imports=True), "Update import statement"
        )

        # splice from the original offsets, back to front; a span overlapping
        # one already taken is dropped
        taken: list[tuple[int, int, CodeChange]] = []
        for start, end, change in edits:
            if all(end <= t_start or t_end <= start for t_start, t_end, _ in taken):
                taken.append((start, end, change))

        modified = content
        for start, end, change in sorted(taken, key=lambda edit: edit[0], reverse=True):
            modified = modified[:start] + change.replacement + modified[end:]

        return GeneratedFix(
            file=file,
            template_id=template.id,
            template_name=template.name,
            changes=tuple(change for _, _, change in taken),
            original_content=content,
            modified_content=modified,
            manual_steps=tuple(template.manual_steps),
            validation=template.validation,
        )

    @staticmethod
    def _collect_edits(
        content: str,
        rules: list[tuple[re.Pattern[str], ReplacementRule]],
        description: str,
    ) -> list[tuple[int, int, CodeChange]]:
        edits = []
        for regex, rule in rules:
            for match in regex.finditer(content):
                line, _ = line_and_column(content, match.start())
                edits.append(
                    (
                        match.start(),
                        match.end(),
                        CodeChange(
                            type=ChangeType.REPLACE,
                            line_start=line,
                            line_end=line + match.group(0).count("\n"),
                            original=match.group(0),
                            replacement=expand_backreferences(rule.replace, match),
                            description=description,
                        ),
                    )
                )
        return edits

    def _rules(
        self, template: FixTemplate, imports: bool = False
    ) -> list[tuple[re.Pattern[str], ReplacementRule]]:
        key = f"{template.id}:imports" if imports else template.id
        if key not in self._compiled:
            rules = template.import_updates if imports else template.patterns
            self._compiled[key] = [(re.compile(rule.match, re.MULTILINE), rule) for rule in rules]
        return self._compiled[key]

    def _target_files(self, analysis: RootCauseAnalysis) -> list[str]:
        files: dict[str, None] = {}
        if analysis.error.file:
            resolved = self._resolve(analysis.error.file)
            if resolved:
                files[resolved] = None
        if analysis.import_chain is not None:
            for node in analysis.import_chain.chain:
                if node.problematic_exports:
                    files[node.file] = None
        for result in analysis.compat_results:
            files[result.file] = None
        return [file for file in files if (self._root / file).is_file()]

    def _resolve(self, file: str) -> str | None:
        served = SERVED_SOURCE.match(file)
        if served:
            path = served.group(1).split("?")[0]
            return path if path.startswith(f"{self._src_dir}/") else None
        return to_relative(file, self._root)
