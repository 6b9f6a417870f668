"""Data models for fix templates, generated fixes and apply results."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChangeType(StrEnum):
    """Kind of edit a code change performs."""

    REPLACE = "replace"
    INSERT = "insert"
    DELETE = "delete"


class ReplacementRule(BaseModel):
    """Ordered regex rewrite inside a fix template."""

    model_config = ConfigDict(frozen=True)

    match: str
    replace: str


class FixTemplate(BaseModel):
    """Declarative fix template.

    ``kind`` selects the transformer: ``regex`` templates are applied rule by
    rule, ``lazy_init`` templates are handled by the singleton rewriter.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    kind: str = Field("regex", pattern="^(regex|lazy_init)$")
    patterns: list[ReplacementRule] = []
    import_updates: list[ReplacementRule] = []
    manual_steps: list[str] = []
    validation: str = ""


@dataclass(frozen=True)
class CodeChange:
    """One discrete edit recorded by the generator."""

    type: ChangeType
    line_start: int
    line_end: int
    original: str
    replacement: str
    description: str


@dataclass(frozen=True)
class GeneratedFix:
    """A template applied to one file's text snapshot.

    ``original_content`` is the integrity anchor checked before writing.
    """

    file: str
    template_id: str
    template_name: str
    changes: tuple[CodeChange, ...]
    original_content: str
    modified_content: str
    manual_steps: tuple[str, ...] = ()
    validation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeneratedFix:
        return cls(
            file=data["file"],
            template_id=data["template_id"],
            template_name=data.get("template_name", data["template_id"]),
            changes=tuple(
                CodeChange(
                    type=ChangeType(c["type"]),
                    line_start=int(c["line_start"]),
                    line_end=int(c["line_end"]),
                    original=c["original"],
                    replacement=c["replacement"],
                    description=c.get("description", ""),
                )
                for c in data.get("changes", ())
            ),
            original_content=data["original_content"],
            modified_content=data["modified_content"],
            manual_steps=tuple(data.get("manual_steps", ())),
            validation=data.get("validation", ""),
        )


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of one fix application attempt."""

    success: bool
    file: str
    dry_run: bool = False
    changes: int | None = None
    error: str | None = None
    backup_path: str | None = None
    preview: str | None = None


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of an all-or-nothing batch."""

    success: bool
    results: tuple[ApplyResult, ...]
    rolled_back: tuple[str, ...] = ()


@dataclass(frozen=True)
class BackupEntry:
    """A timestamped backup directory."""

    path: str
    timestamp: str
    files: tuple[str, ...]
