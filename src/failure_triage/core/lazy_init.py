"""Rewrites eager module-scope singletons into lazily initialized getters.

Converts::

    export const fooService = new FooService();

into::

    let _fooService: FooService | null = null;

    export function getFooService(): FooService {
      if (!_fooService) {
        _fooService = new FooService();
      }
      return _fooService;
    }
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

from failure_triage.models.fix import ChangeType, CodeChange, FixTemplate, GeneratedFix
from failure_triage.utils.fs import line_and_column

SINGLETON_PATTERN = re.compile(r"export\s+const\s+(\w+)\s*=\s*new\s+(\w+)\(\s*\);?")

FILE_HEADER = """/**
 * @fileoverview Services in this file use lazy initialization.
 * Import and call the getter function instead of using the constant directly.
 *
 * Example:
 *   import {{ {getter} }} from './this-file';
 *   const service = {getter}();
 */

"""

GETTER_TEMPLATE = """let _{var}: {cls} | null = null;

/**
 * Get the {cls} instance (lazy initialization)
 */
export function {getter}(): {cls} {{
  if (!_{var}) {{
    _{var} = new {cls}();
  }}
  return _{var};
}}"""


@dataclass(frozen=True)
class Singleton:
    """An eager singleton export found in a source file."""

    var_name: str
    class_name: str
    line: int
    start: int
    end: int
    text: str

    @property
    def getter_name(self) -> str:
        return f"get{self.class_name[:1].upper()}{self.class_name[1:]}"


def find_singletons(content: str) -> list[Singleton]:
    """Eager singleton exports in source order, skipping commented lines."""
    return list(_iter_singletons(content))


def _iter_singletons(content: str) -> Iterator[Singleton]:
    for match in SINGLETON_PATTERN.finditer(content):
        line_start = content.rfind("\n", 0, match.start()) + 1
        prefix = content[line_start : match.start()].strip()
        if prefix.startswith(("//", "*", "/*")):
            continue
        line, _ = line_and_column(content, match.start())
        yield Singleton(
            var_name=match.group(1),
            class_name=match.group(2),
            line=line,
            start=match.start(),
            end=match.end(),
            text=match.group(0),
        )


class LazyInitTransformer:
    """Generates the lazy-initialization fix for one file.

    Registered under the ``lazy-initialization`` template id; the template
    supplies the name and validation text.
    """

    def __init__(self, template: FixTemplate) -> None:
        self._template = template

    def transform(self, file: str, content: str) -> GeneratedFix | None:
        """Rewrite every singleton in ``content``.

        Args:
            file: Repo-relative path recorded on the fix
            content: Current file text

        Returns:
            GeneratedFix, or None when the file has no singletons
        """
        singletons = find_singletons(content)
        if not singletons:
            return None

        changes = []
        modified = content
        # back to front so earlier offsets stay valid
        for singleton in reversed(singletons):
            replacement = GETTER_TEMPLATE.format(
                var=singleton.var_name,
                cls=singleton.class_name,
                getter=singleton.getter_name,
            )
            modified = modified[: singleton.start] + replacement + modified[singleton.end :]
            changes.append(
                CodeChange(
                    type=ChangeType.REPLACE,
                    line_start=singleton.line,
                    line_end=singleton.line,
                    original=singleton.text,
                    replacement=replacement,
                    description=f"Convert {singleton.var_name} to lazy initialization",
                )
            )
        changes.reverse()

        if "@fileoverview" not in content:
            modified = FILE_HEADER.format(getter=singletons[0].getter_name) + modified

        steps = [
            f"Update callers of {s.var_name} to invoke {s.getter_name}() instead"
            for s in singletons
        ]
        return GeneratedFix(
            file=file,
            template_id=self._template.id,
            template_name=self._template.name,
            changes=tuple(changes),
            original_content=content,
            modified_content=modified,
            manual_steps=tuple(dict.fromkeys(steps)),
            validation=self._template.validation,
        )
