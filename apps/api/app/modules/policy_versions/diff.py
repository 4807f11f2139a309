"""Diff engine — line and field comparison between two policy snapshots.

Pure: no database access. Lines come from ``content.flatten_to_lines``; the
alignment is a longest common subsequence of the two line lists, with the
runs between matches split into ``modified`` pairs and leftover
``removed``/``added`` lines. ``difflib`` handles the character and word level.
"""

from __future__ import annotations

import difflib
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Protocol

from app.modules.policy_versions.content import flatten_to_lines
from app.modules.policy_versions.exceptions import InvalidComparisonError

METADATA_FIELDS = ("title", "category", "jurisdiction_tags", "description", "effective_date")


class Snapshot(Protocol):
    id: uuid.UUID
    policy_id: uuid.UUID
    content: dict
    created_at: datetime
    created_by: uuid.UUID
    category: str | None

    @property
    def version_number(self) -> str: ...

    def metadata_fields(self) -> dict[str, Any]: ...


class LineDiffKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


_MIRRORED_KIND = {
    LineDiffKind.ADDED: LineDiffKind.REMOVED,
    LineDiffKind.REMOVED: LineDiffKind.ADDED,
    LineDiffKind.MODIFIED: LineDiffKind.MODIFIED,
    LineDiffKind.UNCHANGED: LineDiffKind.UNCHANGED,
}


@dataclass
class WordSegment:
    op: str  # equal | insert | delete
    text: str


@dataclass
class LineDiff:
    kind: LineDiffKind
    line_number_old: int | None = None
    line_number_new: int | None = None
    text_old: str | None = None
    text_new: str | None = None
    similarity: float | None = None
    segments: list[WordSegment] = field(default_factory=list)

    def mirrored(self) -> LineDiff:
        return LineDiff(
            kind=_MIRRORED_KIND[self.kind],
            line_number_old=self.line_number_new,
            line_number_new=self.line_number_old,
            text_old=self.text_new,
            text_new=self.text_old,
        )


@dataclass
class FieldDiff:
    field: str
    old_value: Any
    new_value: Any
    changed: bool


@dataclass
class DiffStats:
    additions: int = 0
    deletions: int = 0
    modifications: int = 0
    unchanged: int = 0
    total_changed: int = 0
    percent_changed: float = 0.0

    @classmethod
    def from_line_diffs(cls, line_diffs: list[LineDiff], old_count: int, new_count: int) -> DiffStats:
        counts = {kind: 0 for kind in LineDiffKind}
        for line in line_diffs:
            counts[line.kind] += 1
        total = counts[LineDiffKind.ADDED] + counts[LineDiffKind.REMOVED] + counts[LineDiffKind.MODIFIED]
        return cls(
            additions=counts[LineDiffKind.ADDED],
            deletions=counts[LineDiffKind.REMOVED],
            modifications=counts[LineDiffKind.MODIFIED],
            unchanged=counts[LineDiffKind.UNCHANGED],
            total_changed=total,
            # Non-adjacent removals and additions can outnumber the longer side
            percent_changed=round(min(1.0, total / max(old_count, new_count, 1)), 4),
        )


@dataclass
class VersionRef:
    id: uuid.UUID | None
    version_number: str | None
    created_at: datetime | None = None
    created_by: uuid.UUID | None = None


@dataclass
class DiffReport:
    """Ephemeral comparison result; never persisted."""

    from_version: VersionRef
    to_version: VersionRef
    line_diffs: list[LineDiff]
    field_diffs: list[FieldDiff]
    stats: DiffStats
    time_difference_seconds: float | None = None
    editors: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)

    @property
    def changed_fields(self) -> list[str]:
        return [fd.field for fd in self.field_diffs if fd.changed]

    @property
    def is_identical(self) -> bool:
        return self.stats.total_changed == 0 and not self.changed_fields

    @property
    def significance(self) -> str:
        pct = self.stats.percent_changed
        if pct >= 0.5:
            return "critical"
        if pct >= 0.3:
            return "major"
        if pct >= 0.1 or self.changed_fields:
            return "moderate"
        return "minor"

    def describe(self) -> str:
        """One-line human summary, used for audit payloads."""
        s = self.stats
        text = (
            f"{s.additions} added, {s.deletions} removed, "
            f"{s.modifications} modified, {s.unchanged} unchanged line(s)"
        )
        if self.changed_fields:
            text += f"; changed fields: {', '.join(self.changed_fields)}"
        return text

    def old_lines(self) -> list[str]:
        return [ld.text_old for ld in self.line_diffs if ld.text_old is not None]

    def new_lines(self) -> list[str]:
        return [ld.text_new for ld in self.line_diffs if ld.text_new is not None]

    def to_unified(self, context_lines: int = 3) -> list[str]:
        """Unified text diff of the flattened lines, git style."""
        return list(
            difflib.unified_diff(
                self.old_lines(),
                self.new_lines(),
                fromfile=f"v{self.from_version.version_number}",
                tofile=f"v{self.to_version.version_number}",
                lineterm="",
                n=context_lines,
            )
        )


# ── Alignment ─────────────────────────────────────────────────────────────────


def _similarity(a: str, b: str) -> float:
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return difflib.SequenceMatcher(None, a, b, autojunk=False).ratio()


def word_segments(old_text: str, new_text: str) -> list[WordSegment]:
    """Word-level diff of a modified line."""
    old_words = old_text.split()
    new_words = new_text.split()
    matcher = difflib.SequenceMatcher(None, old_words, new_words, autojunk=False)

    segments: list[WordSegment] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            segments.append(WordSegment("equal", " ".join(old_words[i1:i2])))
            continue
        if tag in ("delete", "replace"):
            segments.append(WordSegment("delete", " ".join(old_words[i1:i2])))
        if tag in ("insert", "replace"):
            segments.append(WordSegment("insert", " ".join(new_words[j1:j2])))
    return segments


def _pair_hunk(
    old_hunk: list[str],
    new_hunk: list[str],
    proximity_window: int,
    min_similarity: float,
) -> list[tuple[int, int]]:
    """Pick (old, new) index pairs inside a replace hunk, in increasing order."""
    pairs: list[tuple[int, int]] = []
    next_j = 0
    for i, old_text in enumerate(old_hunk):
        best: tuple[float, int] | None = None
        for j in range(max(next_j, i - proximity_window), min(len(new_hunk), i + proximity_window + 1)):
            score = _similarity(old_text, new_hunk[j])
            if score < min_similarity:
                continue
            # Highest similarity wins; ties go to the closest position
            if best is None or score > best[0] or (score == best[0] and abs(j - i) < abs(best[1] - i)):
                best = (score, j)
        if best is not None:
            pairs.append((i, best[1]))
            next_j = best[1] + 1
    return pairs


def _lcs_matches(old: list[str], new: list[str]) -> list[tuple[int, int]]:
    """Index pairs of a longest common subsequence of two line lists.

    Common prefix and suffix are matched directly; the middle is solved with
    the classic suffix-length table, preferring deletions on ties.
    """
    start = 0
    while start < len(old) and start < len(new) and old[start] == new[start]:
        start += 1
    end_old, end_new = len(old), len(new)
    while end_old > start and end_new > start and old[end_old - 1] == new[end_new - 1]:
        end_old -= 1
        end_new -= 1

    matches = [(k, k) for k in range(start)]

    a = old[start:end_old]
    b = new[start:end_new]
    n, m = len(a), len(b)
    # lengths[i][j] = LCS length of a[i:] and b[j:]
    lengths = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(n - 1, -1, -1):
        row, below = lengths[i], lengths[i + 1]
        for j in range(m - 1, -1, -1):
            if a[i] == b[j]:
                row[j] = below[j + 1] + 1
            else:
                row[j] = max(below[j], row[j + 1])

    i = j = 0
    while i < n and j < m:
        if a[i] == b[j]:
            matches.append((start + i, start + j))
            i += 1
            j += 1
        elif lengths[i + 1][j] >= lengths[i][j + 1]:
            i += 1
        else:
            j += 1

    matches.extend((end_old + k, end_new + k) for k in range(len(old) - end_old))
    return matches


def _opcodes(old: list[str], new: list[str]) -> list[tuple[str, int, int, int, int]]:
    """Group LCS matches into equal/delete/insert/replace runs."""
    opcodes: list[tuple[str, int, int, int, int]] = []
    i = j = 0
    for mi, mj in [*_lcs_matches(old, new), (len(old), len(new))]:
        if i < mi and j < mj:
            opcodes.append(("replace", i, mi, j, mj))
        elif i < mi:
            opcodes.append(("delete", i, mi, j, j))
        elif j < mj:
            opcodes.append(("insert", i, i, j, mj))
        if mi < len(old):
            if opcodes and opcodes[-1][0] == "equal" and opcodes[-1][2] == mi:
                tag, i1, _, j1, _ = opcodes.pop()
                opcodes.append((tag, i1, mi + 1, j1, mj + 1))
            else:
                opcodes.append(("equal", mi, mi + 1, mj, mj + 1))
        i, j = mi + 1, mj + 1
    return opcodes


def _align(
    old: list[str],
    new: list[str],
    proximity_window: int,
    min_similarity: float,
) -> list[LineDiff]:
    result: list[LineDiff] = []

    def removed(i: int) -> LineDiff:
        return LineDiff(LineDiffKind.REMOVED, line_number_old=i + 1, text_old=old[i])

    def added(j: int) -> LineDiff:
        return LineDiff(LineDiffKind.ADDED, line_number_new=j + 1, text_new=new[j])

    for tag, i1, i2, j1, j2 in _opcodes(old, new):
        if tag == "equal":
            for offset in range(i2 - i1):
                result.append(
                    LineDiff(
                        LineDiffKind.UNCHANGED,
                        line_number_old=i1 + offset + 1,
                        line_number_new=j1 + offset + 1,
                        text_old=old[i1 + offset],
                        text_new=new[j1 + offset],
                    )
                )
        elif tag == "delete":
            result.extend(removed(i) for i in range(i1, i2))
        elif tag == "insert":
            result.extend(added(j) for j in range(j1, j2))
        else:
            pairs = _pair_hunk(old[i1:i2], new[j1:j2], proximity_window, min_similarity)
            i, j = i1, j1
            for pi, pj in pairs:
                result.extend(removed(k) for k in range(i, i1 + pi))
                result.extend(added(k) for k in range(j, j1 + pj))
                result.append(
                    LineDiff(
                        LineDiffKind.MODIFIED,
                        line_number_old=i1 + pi + 1,
                        line_number_new=j1 + pj + 1,
                        text_old=old[i1 + pi],
                        text_new=new[j1 + pj],
                    )
                )
                i, j = i1 + pi + 1, j1 + pj + 1
            result.extend(removed(k) for k in range(i, i2))
            result.extend(added(k) for k in range(j, j2))
    return result


def align_lines(
    old: list[str],
    new: list[str],
    proximity_window: int = 0,
    min_similarity: float = 0.0,
) -> list[LineDiff]:
    """Classify every line of ``old`` and ``new`` as unchanged/removed/added/modified.

    Several subsequences can share the maximum length and the choice between
    them depends on argument order, so the alignment always runs in one
    canonical orientation and is mirrored when the inputs arrive the other
    way round. compare(a, b) and compare(b, a) are exact mirrors.
    """
    if old > new:
        line_diffs = [ld.mirrored() for ld in _align(new, old, proximity_window, min_similarity)]
    else:
        line_diffs = _align(old, new, proximity_window, min_similarity)

    for ld in line_diffs:
        if ld.kind is LineDiffKind.MODIFIED:
            ld.similarity = round(_similarity(ld.text_old or "", ld.text_new or ""), 4)
            ld.segments = word_segments(ld.text_old or "", ld.text_new or "")
    return line_diffs


def diff_fields(old_fields: dict[str, Any], new_fields: dict[str, Any]) -> list[FieldDiff]:
    diffs = []
    for name in METADATA_FIELDS:
        old_value = old_fields.get(name)
        new_value = new_fields.get(name)
        diffs.append(FieldDiff(name, old_value, new_value, changed=old_value != new_value))
    return diffs


# ── Engine ────────────────────────────────────────────────────────────────────


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _ref(snapshot: Snapshot) -> VersionRef:
    return VersionRef(
        id=snapshot.id,
        version_number=snapshot.version_number,
        created_at=snapshot.created_at,
        created_by=snapshot.created_by,
    )


def _unique(values: list[Any]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value is None:
            continue
        text = value.isoformat() if isinstance(value, date) else str(value)
        if text not in seen:
            seen.append(text)
    return seen


class DiffEngine:
    """Compares two snapshots of the same policy."""

    def __init__(self, proximity_window: int = 0, min_similarity: float = 0.0) -> None:
        if proximity_window < 0:
            raise ValueError("proximity_window must be >= 0")
        self.proximity_window = proximity_window
        self.min_similarity = min_similarity

    def compare(self, old: Snapshot, new: Snapshot) -> DiffReport:
        if old.policy_id != new.policy_id:
            raise InvalidComparisonError(
                "Cannot compare versions of different policies",
                version_a=old.id,
                version_b=new.id,
                policy_a=old.policy_id,
                policy_b=new.policy_id,
            )
        if old.id == new.id:
            return self._identity_report(old)

        old_lines = flatten_to_lines(old.content)
        new_lines = flatten_to_lines(new.content)
        line_diffs = align_lines(old_lines, new_lines, self.proximity_window, self.min_similarity)

        time_difference = None
        if old.created_at and new.created_at:
            time_difference = (_aware(new.created_at) - _aware(old.created_at)).total_seconds()

        return DiffReport(
            from_version=_ref(old),
            to_version=_ref(new),
            line_diffs=line_diffs,
            field_diffs=diff_fields(old.metadata_fields(), new.metadata_fields()),
            stats=DiffStats.from_line_diffs(line_diffs, len(old_lines), len(new_lines)),
            time_difference_seconds=time_difference,
            editors=_unique([old.created_by, new.created_by]),
            categories=_unique([old.category, new.category]),
        )

    def _identity_report(self, snapshot: Snapshot) -> DiffReport:
        lines = flatten_to_lines(snapshot.content)
        line_diffs = [
            LineDiff(
                LineDiffKind.UNCHANGED,
                line_number_old=n,
                line_number_new=n,
                text_old=text,
                text_new=text,
            )
            for n, text in enumerate(lines, start=1)
        ]
        fields = snapshot.metadata_fields()
        return DiffReport(
            from_version=_ref(snapshot),
            to_version=_ref(snapshot),
            line_diffs=line_diffs,
            field_diffs=diff_fields(fields, fields),
            stats=DiffStats.from_line_diffs(line_diffs, len(lines), len(lines)),
            time_difference_seconds=0.0,
            editors=_unique([snapshot.created_by]),
            categories=_unique([snapshot.category]),
        )
