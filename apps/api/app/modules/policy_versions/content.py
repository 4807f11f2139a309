"""Structured policy content and its deterministic flattening to lines.

A policy body is an ordered list of typed blocks. ``flatten_to_lines`` is the
only view the diff engine and word counts see, so it must be a pure function
of the content: identical content always yields identical lines.
"""

from __future__ import annotations

import hashlib
import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

TABLE_CELL_SEPARATOR = " | "


class _Block(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class HeadingBlock(_Block):
    type: Literal["heading"] = "heading"
    level: int = Field(default=1, ge=1, le=6)
    text: str


class ParagraphBlock(_Block):
    type: Literal["paragraph"] = "paragraph"
    text: str


class ListItemBlock(_Block):
    type: Literal["list_item"] = "list_item"
    text: str
    ordered: bool = False
    depth: int = Field(default=0, ge=0, le=8)


class QuoteBlock(_Block):
    type: Literal["quote"] = "quote"
    text: str


class TableBlock(_Block):
    type: Literal["table"] = "table"
    rows: list[list[str]] = Field(default_factory=list)


class DividerBlock(_Block):
    type: Literal["divider"] = "divider"


Block = Annotated[
    Union[HeadingBlock, ParagraphBlock, ListItemBlock, QuoteBlock, TableBlock, DividerBlock],
    Field(discriminator="type"),
]


class PolicyContent(BaseModel):
    """Body of a policy: an ordered sequence of typed blocks."""

    model_config = ConfigDict(extra="forbid")

    blocks: list[Block] = Field(default_factory=list)

    @classmethod
    def from_text(cls, text: str) -> PolicyContent:
        """One paragraph per non-blank line of plain text."""
        return cls(
            blocks=[ParagraphBlock(text=line) for line in text.splitlines() if line.strip()]
        )

    @classmethod
    def from_stored(cls, data: dict[str, Any] | None) -> PolicyContent:
        return cls.model_validate(data or {"blocks": []})

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


_content_adapter = TypeAdapter(PolicyContent)


def _text_lines(text: str) -> list[str]:
    lines = []
    for raw in text.splitlines():
        line = raw.rstrip()
        if line.strip():
            lines.append(line)
    return lines


def _block_lines(block: _Block) -> list[str]:
    if isinstance(block, (HeadingBlock, ParagraphBlock, ListItemBlock, QuoteBlock)):
        return _text_lines(block.text)
    if isinstance(block, TableBlock):
        lines = []
        for row in block.rows:
            line = TABLE_CELL_SEPARATOR.join(cell.strip() for cell in row).rstrip()
            if line.strip(TABLE_CELL_SEPARATOR + " "):
                lines.append(line)
        return lines
    if isinstance(block, DividerBlock):
        return []
    raise TypeError(f"Unsupported block type: {type(block).__name__}")


def _coerce(content: PolicyContent | dict[str, Any]) -> PolicyContent:
    if isinstance(content, PolicyContent):
        return content
    return _content_adapter.validate_python(content)


def flatten_to_lines(content: PolicyContent | dict[str, Any]) -> list[str]:
    """Flatten content to the ordered plain-text lines used for diffing.

    Block markers (heading level, list bullets) are not part of the line, so
    turning a paragraph into a list item is not reported as a text change.
    """
    lines: list[str] = []
    for block in _coerce(content).blocks:
        lines.extend(_block_lines(block))
    return lines


def word_count(content: PolicyContent | dict[str, Any]) -> int:
    return sum(len(line.split()) for line in flatten_to_lines(content))


def content_hash(content: PolicyContent | dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of the content."""
    canonical = json.dumps(
        _coerce(content).to_stored(),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
