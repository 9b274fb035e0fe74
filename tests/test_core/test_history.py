"""
Tests for the draft version history engine.
"""

import csv
import io
from datetime import timedelta

import pytest

from schemaforge.core.history import (
    Draft,
    VersionHistory,
    canonical_json,
    content_checksum,
    content_size,
    normalize_tags,
    to_csv,
)
from schemaforge.utils.dates import utc_now

ARTICLE = {"@context": "https://schema.org", "@type": "Article", "headline": "Hello"}


@pytest.fixture
def history() -> VersionHistory:
    return VersionHistory()


class TestHelpers:
    @pytest.mark.unit
    def test_canonical_json_is_key_order_independent(self) -> None:
        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1})
        assert canonical_json({"b": 1, "a": 2}) == '{"a":2,"b":1}'

    @pytest.mark.unit
    def test_checksum_and_size(self) -> None:
        assert content_checksum({"a": 1}) == content_checksum({"a": 1})
        assert content_checksum({"a": 1}) != content_checksum({"a": 2})
        assert len(content_checksum({"a": 1})) == 64
        # Size counts UTF-8 bytes, not characters
        assert content_size({"name": "é"}) == len('{"name":"é"}'.encode())

    @pytest.mark.unit
    def test_normalize_tags(self) -> None:
        assert normalize_tags([" Published ", "published", "", "SEO"]) == ["published", "seo"]
        assert normalize_tags(None) == []


class TestVersionHistory:
    """Tests for VersionHistory class."""

    # ============================================================
    # Add Version Tests
    # ============================================================

    @pytest.mark.unit
    def test_versions_start_at_one_and_increment(self, history: VersionHistory) -> None:
        first = history.add_version(ARTICLE)
        second = history.add_version({**ARTICLE, "headline": "Bye"}, author="u1")

        assert (first.version, second.version) == (1, 2)
        assert first.tags == ["auto"]
        assert second.author == "u1"
        assert first.size == content_size(ARTICLE)
        assert first.checksum == content_checksum(ARTICLE)
        assert history.current.version == 2
        assert len(history) == 2

    @pytest.mark.unit
    def test_current_is_a_copy(self, history: VersionHistory) -> None:
        content = {"@type": "Article", "author": {"name": "Ada"}}
        draft = history.add_version(content)

        history.current.content["author"]["name"] = "Grace"
        assert draft.content["author"]["name"] == "Ada"

    @pytest.mark.unit
    def test_explicit_tags_replace_default(self, history: VersionHistory) -> None:
        draft = history.add_version(ARTICLE, tags=["Manual"])
        assert draft.tags == ["manual"]

    @pytest.mark.unit
    def test_cap_evicts_oldest_and_never_reuses_versions(self) -> None:
        history = VersionHistory(limit=50)
        for i in range(55):
            history.add_version({"n": i})

        versions = [d.version for d in history.drafts]
        assert len(history) == 50
        assert versions[0] == 6
        assert versions[-1] == 55
        assert history.add_version({"n": 55}).version == 56

    @pytest.mark.unit
    def test_eviction_uses_created_at_order(self) -> None:
        now = utc_now()
        history = VersionHistory(limit=2)
        history.add_version({"n": 1}, now=now)
        history.add_version({"n": 2}, now=now - timedelta(hours=1))
        history.add_version({"n": 3}, now=now + timedelta(hours=1))

        assert [d.version for d in history.drafts] == [1, 3]

    # ============================================================
    # Restore / Tag Tests
    # ============================================================

    @pytest.mark.unit
    def test_restore_copies_snapshot_without_touching_history(
        self, history: VersionHistory
    ) -> None:
        history.add_version({"v": 1})
        history.add_version({"v": 2})
        before = history.to_records()

        assert history.restore(1) is True
        assert history.current.version == 1
        assert history.current.content == {"v": 1}
        assert history.current.updated_at >= history.get(1).updated_at
        assert history.to_records() == before

    @pytest.mark.unit
    def test_restore_unknown_version(self, history: VersionHistory) -> None:
        history.add_version({"v": 1})
        assert history.restore(99) is False
        assert history.current.version == 1

    @pytest.mark.unit
    def test_tag_is_idempotent_ordered_union(self, history: VersionHistory) -> None:
        history.add_version(ARTICLE)

        assert history.tag(1, ["Published", "seo"]) is True
        assert history.tag(1, ["seo", "published"]) is True

        assert history.get(1).tags == ["auto", "published", "seo"]
        assert history.current.tags == ["auto", "published", "seo"]
        assert history.tag(2, ["x"]) is False

    # ============================================================
    # Compare Tests
    # ============================================================

    @pytest.mark.unit
    def test_compare_reports_key_changes(self, history: VersionHistory) -> None:
        history.add_version({"@type": "Article", "headline": "A", "image": "x.png"})
        history.add_version({"@type": "Article", "headline": "B", "author": "Ada"})

        result = history.compare(1, 2)

        assert result["version1"] == 1
        assert result["version2"] == 2
        assert result["changed"] is True
        assert result["changes"] == {
            "added": ["author"],
            "removed": ["image"],
            "modified": ["headline"],
        }
        assert result["size_difference"] == history.get(2).size - history.get(1).size

    @pytest.mark.unit
    def test_compare_identical_content(self, history: VersionHistory) -> None:
        history.add_version(ARTICLE)
        history.add_version(dict(reversed(list(ARTICLE.items()))))

        result = history.compare(1, 2)
        assert result["changed"] is False
        assert result["size_difference"] == 0

    @pytest.mark.unit
    def test_compare_missing_version(self, history: VersionHistory) -> None:
        history.add_version(ARTICLE)
        assert history.compare(1, 5) is None

    # ============================================================
    # Search / Stats / Recent Tests
    # ============================================================

    @pytest.mark.unit
    def test_search_is_conjunctive(self, history: VersionHistory) -> None:
        now = utc_now()
        history.add_version({"headline": "Cats"}, author="ada", now=now - timedelta(days=2))
        history.add_version(
            {"headline": "Dogs"}, author="ada", tags=["manual"], now=now - timedelta(days=1)
        )
        history.add_version({"headline": "Dog food"}, author="bob", now=now)

        assert [d.version for d in history.search(author="ada")] == [1, 2]
        assert [d.version for d in history.search(tags=["MANUAL", "missing"])] == [2]
        assert [d.version for d in history.search(content="dog")] == [2, 3]
        assert [d.version for d in history.search(content="DOG", author="bob")] == [3]
        since = history.search(date_from=now - timedelta(hours=36))
        assert [d.version for d in since] == [2, 3]
        until = history.search(date_to=now - timedelta(hours=12))
        assert [d.version for d in until] == [1, 2]
        assert history.search() == history.drafts

    @pytest.mark.unit
    def test_stats(self, history: VersionHistory) -> None:
        history.add_version({"a": 1}, author="ada")
        history.add_version({"a": 22}, author="bob", tags=["manual", "seo"])
        history.add_version({"a": 333}, author="ada")

        stats = history.stats()

        assert stats["total_versions"] == 3
        assert stats["auto_versions"] == 2
        assert stats["manual_versions"] == 1
        assert stats["unique_authors"] == 2
        assert stats["authors"] == ["ada", "bob"]
        assert stats["tags"] == ["auto", "manual", "seo"]
        assert stats["average_size"] == round(sum(d.size for d in history.drafts) / 3)
        assert stats["oldest_version"] == history.drafts[0].created_at
        assert stats["newest_version"] == history.drafts[-1].created_at

    @pytest.mark.unit
    def test_stats_empty(self, history: VersionHistory) -> None:
        stats = history.stats()
        assert stats["total_versions"] == 0
        assert stats["average_size"] == 0
        assert stats["oldest_version"] is None

    @pytest.mark.unit
    def test_recent_newest_first(self, history: VersionHistory) -> None:
        for i in range(5):
            history.add_version({"n": i})

        assert [d.version for d in history.recent(3)] == [5, 4, 3]

    # ============================================================
    # Persistence / Export Tests
    # ============================================================

    @pytest.mark.unit
    def test_records_round_trip_keeps_utc(self, history: VersionHistory) -> None:
        history.add_version(ARTICLE, author="ada")
        restored = VersionHistory.from_records(
            history.to_records(), history.current.to_record()
        )

        assert restored.get(1) == history.get(1)
        assert restored.current.created_at.tzinfo is not None

    @pytest.mark.unit
    def test_from_record_attaches_utc_to_naive_timestamps(self) -> None:
        draft = Draft.from_record(
            {
                "content": {},
                "version": 1,
                "created_at": "2024-01-01T10:00:00",
                "updated_at": "2024-01-01T10:00:00",
            }
        )
        assert draft.created_at.utcoffset() == timedelta(0)

    @pytest.mark.unit
    def test_export_json_selection_without_content(self, history: VersionHistory) -> None:
        for i in range(3):
            history.add_version({"n": i})

        rows = history.export(versions=[1, 3], include_content=False)

        assert [r["version"] for r in rows] == [1, 3]
        assert all("content" not in r for r in rows)

    @pytest.mark.unit
    def test_csv_export_quotes_content(self, history: VersionHistory) -> None:
        content = {"headline": 'He said "hi", then left', "body": "line1\nline2"}
        history.add_version(content, author="ada", tags=["manual", "seo"])

        rendered = to_csv(history.export(format="csv"))
        rows = list(csv.DictReader(io.StringIO(rendered)))

        assert list(rows[0].keys()) == [
            "version",
            "created_at",
            "author",
            "tags",
            "size",
            "content",
        ]
        assert rows[0]["version"] == "1"
        assert rows[0]["tags"] == "manual;seo"
        assert rows[0]["content"] == canonical_json(content)

    @pytest.mark.unit
    def test_csv_export_without_content(self, history: VersionHistory) -> None:
        history.add_version(ARTICLE)
        rows = history.export(format="csv", include_content=False)
        assert rows[0]["content"] == ""
