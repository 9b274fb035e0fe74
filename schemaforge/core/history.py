"""
Version history engine for project drafts.

A project keeps an ordered ledger of draft snapshots plus a denormalized
``current`` copy of the one being edited. The engine is pure and in-memory:
``ProjectRepository`` loads it from the project's JSON columns and writes
``drafts`` / ``current`` back after every mutation.

Rules:
    - versions are ``max(existing) + 1`` starting at 1, never reused
    - at most ``limit`` snapshots are kept; the oldest by
      (created_at, version) are evicted first
    - restoring copies a snapshot into ``current`` and never touches history
    - content is opaque JSON; it is only serialized, hashed and measured
"""

import csv
import hashlib
import io
import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from schemaforge.utils.dates import ensure_utc, utc_now

AUTO_TAG = "auto"
MANUAL_TAG = "manual"
DEFAULT_HISTORY_LIMIT = 50

CSV_FIELDS = ("version", "created_at", "author", "tags", "size", "content")


def canonical_json(content: Any) -> str:
    """Stable serialization used for checksums, sizes and content search."""
    return json.dumps(
        content, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )


def content_checksum(content: Any) -> str:
    return hashlib.sha256(canonical_json(content).encode("utf-8")).hexdigest()


def content_size(content: Any) -> int:
    return len(canonical_json(content).encode("utf-8"))


def normalize_tags(tags: Iterable[str] | None) -> list[str]:
    """Trim and lower-case tags, dropping blanks and repeats (order kept)."""
    normalized: list[str] = []
    for tag in tags or ():
        value = str(tag).strip().lower()
        if value and value not in normalized:
            normalized.append(value)
    return normalized


class Draft(BaseModel):
    """A single versioned snapshot of project content."""

    content: Any
    version: int = Field(ge=1)
    created_at: datetime
    updated_at: datetime
    author: str | None = None
    changes: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    size: int = 0
    checksum: str = ""

    @property
    def is_auto(self) -> bool:
        return AUTO_TAG in self.tags

    def to_record(self) -> dict[str, Any]:
        """JSON-column representation."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Draft":
        draft = cls.model_validate(record)
        draft.created_at = ensure_utc(draft.created_at)
        draft.updated_at = ensure_utc(draft.updated_at)
        return draft


def _diff(old: Any, new: Any) -> dict[str, list[str]]:
    """Top-level key diff for object content; whole-content otherwise."""
    changes: dict[str, list[str]] = {"added": [], "removed": [], "modified": []}

    if isinstance(old, dict) and isinstance(new, dict):
        changes["added"] = sorted(str(k) for k in new.keys() - old.keys())
        changes["removed"] = sorted(str(k) for k in old.keys() - new.keys())
        changes["modified"] = sorted(
            str(k)
            for k in old.keys() & new.keys()
            if canonical_json(old[k]) != canonical_json(new[k])
        )
    elif canonical_json(old) != canonical_json(new):
        changes["modified"] = ["content"]

    return changes


class VersionHistory:
    """
    Capped, ordered ledger of draft snapshots.

    Usage:
        history = VersionHistory()
        draft = history.add_version({"@type": "Article"}, author="u1")
        history.tag(draft.version, ["Published"])
        history.restore(draft.version)
    """

    def __init__(
        self,
        drafts: Iterable[Draft] = (),
        current: Draft | None = None,
        *,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.limit = limit
        self.drafts: list[Draft] = sorted(drafts, key=lambda d: (d.created_at, d.version))
        self.current = current

    @classmethod
    def from_records(
        cls,
        records: list[dict[str, Any]] | None,
        current: dict[str, Any] | None = None,
        *,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> "VersionHistory":
        return cls(
            [Draft.from_record(r) for r in records or []],
            Draft.from_record(current) if current else None,
            limit=limit,
        )

    def to_records(self) -> list[dict[str, Any]]:
        return [draft.to_record() for draft in self.drafts]

    def __len__(self) -> int:
        return len(self.drafts)

    @property
    def latest_version(self) -> int:
        return max((d.version for d in self.drafts), default=0)

    def get(self, version: int) -> Draft | None:
        for draft in self.drafts:
            if draft.version == version:
                return draft
        return None

    def add_version(
        self,
        content: Any,
        *,
        author: str | None = None,
        changes: list[str] | None = None,
        tags: Iterable[str] | None = None,
        now: datetime | None = None,
    ) -> Draft:
        """Append a snapshot, make it current and evict beyond the cap."""
        now = now or utc_now()
        draft = Draft(
            content=content,
            version=self.latest_version + 1,
            created_at=now,
            updated_at=now,
            author=author,
            changes=list(changes or []),
            tags=normalize_tags([AUTO_TAG] if tags is None else tags),
            size=content_size(content),
            checksum=content_checksum(content),
        )

        self.drafts.append(draft)
        self.drafts.sort(key=lambda d: (d.created_at, d.version))
        if len(self.drafts) > self.limit:
            self.drafts = self.drafts[-self.limit :]

        self.current = draft.model_copy(deep=True)
        return draft

    def restore(self, version: int, *, now: datetime | None = None) -> bool:
        draft = self.get(version)
        if draft is None:
            return False
        self.current = draft.model_copy(deep=True, update={"updated_at": now or utc_now()})
        return True

    def compare(self, version1: int, version2: int) -> dict[str, Any] | None:
        first, second = self.get(version1), self.get(version2)
        if first is None or second is None:
            return None

        return {
            "version1": first.version,
            "version2": second.version,
            "changed": first.checksum != second.checksum,
            "changes": _diff(first.content, second.content),
            "size_difference": second.size - first.size,
        }

    def tag(self, version: int, tags: Iterable[str]) -> bool:
        draft = self.get(version)
        if draft is None:
            return False
        draft.tags = normalize_tags([*draft.tags, *normalize_tags(tags)])
        if self.current is not None and self.current.version == version:
            self.current.tags = list(draft.tags)
        return True

    def search(
        self,
        *,
        tags: Iterable[str] | None = None,
        author: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        content: str | None = None,
    ) -> list[Draft]:
        """Drafts matching every given criterion; ``tags`` matches any listed tag."""
        wanted_tags = set(normalize_tags(tags))
        needle = content.lower() if content else None
        date_from = ensure_utc(date_from)
        date_to = ensure_utc(date_to)

        matches = []
        for draft in self.drafts:
            if wanted_tags and not wanted_tags.intersection(draft.tags):
                continue
            if author and draft.author != author:
                continue
            if date_from and draft.created_at < date_from:
                continue
            if date_to and draft.created_at > date_to:
                continue
            if needle and needle not in canonical_json(draft.content).lower():
                continue
            matches.append(draft)
        return matches

    def stats(self) -> dict[str, Any]:
        total = len(self.drafts)
        auto = sum(1 for d in self.drafts if d.is_auto)

        authors: list[str] = []
        tags: list[str] = []
        for draft in self.drafts:
            if draft.author and draft.author not in authors:
                authors.append(draft.author)
            for tag in draft.tags:
                if tag not in tags:
                    tags.append(tag)

        return {
            "total_versions": total,
            "auto_versions": auto,
            "manual_versions": total - auto,
            "unique_authors": len(authors),
            "authors": authors,
            "unique_tags": len(tags),
            "tags": tags,
            "average_size": round(sum(d.size for d in self.drafts) / total) if total else 0,
            "oldest_version": self.drafts[0].created_at if total else None,
            "newest_version": self.drafts[-1].created_at if total else None,
        }

    def recent(self, limit: int = 10) -> list[Draft]:
        """Newest snapshots first."""
        return list(reversed(self.drafts))[:limit]

    def export(
        self,
        format: Literal["json", "csv"] = "json",
        versions: Iterable[int] | None = None,
        include_content: bool = True,
    ) -> list[dict[str, Any]]:
        """
        Rows describing the selected versions.

        JSON rows are full draft records (``content`` dropped when excluded).
        CSV rows are flat: tags joined with ``;``, content serialized or empty.
        """
        selected = self.drafts
        if versions is not None:
            wanted = set(versions)
            selected = [d for d in self.drafts if d.version in wanted]

        if format == "csv":
            return [
                {
                    "version": d.version,
                    "created_at": d.created_at.isoformat(),
                    "author": d.author or "",
                    "tags": ";".join(d.tags),
                    "size": d.size,
                    "content": canonical_json(d.content) if include_content else "",
                }
                for d in selected
            ]

        rows = []
        for draft in selected:
            row = draft.to_record()
            if not include_content:
                row.pop("content")
            rows.append(row)
        return rows


def to_csv(rows: list[dict[str, Any]]) -> str:
    """Render CSV export rows with a header line."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_FIELDS, extrasaction="ignore")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()
