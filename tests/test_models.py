"""Tests for data models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from vaultpress.models import (
    DocumentRecord,
    MediaRecord,
    MediaVariant,
    SlugInfo,
    TocItem,
    format_datetime,
    to_jsonable,
)


class TestFormatDatetime:
    """Test timestamp serialization."""

    def test_utc_with_milliseconds(self) -> None:
        value = datetime(2025, 3, 4, 5, 6, 7, 891000, tzinfo=timezone.utc)
        assert format_datetime(value) == "2025-03-04T05:06:07.891Z"

    def test_converts_offsets(self) -> None:
        value = datetime(2025, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_datetime(value) == "2025-01-01T00:00:00.000Z"

    def test_naive_treated_as_utc(self) -> None:
        assert format_datetime(datetime(2025, 1, 1)) == "2025-01-01T00:00:00.000Z"

    def test_to_jsonable_nested(self) -> None:
        value = {"when": [datetime(2025, 1, 1, tzinfo=timezone.utc)], "n": 1}
        assert to_jsonable(value) == {"when": ["2025-01-01T00:00:00.000Z"], "n": 1}


class TestDocumentRecord:
    """Test DocumentRecord serialization."""

    def test_to_dict(self) -> None:
        doc = DocumentRecord(
            path="notes/a.md",
            file_name="a",
            title="A",
            hash="h",
            desired_slug="a",
            frontmatter={"date": datetime(2025, 10, 16, tzinfo=timezone.utc)},
            body="body",
            slug="a",
            toc=[TocItem(title="Intro", depth=2, id="intro")],
            slug_info=SlugInfo(desired="a", disambiguated="a", final="a"),
        )

        data = doc.to_dict()

        assert data["frontmatter"] == {"date": "2025-10-16T00:00:00.000Z"}
        assert data["toc"] == [{"title": "Intro", "depth": 2, "id": "intro"}]
        assert data["slug_info"]["final_slug"] == "a"
        assert data["fs_created"] is None
        assert "body" not in data


class TestMediaRecord:
    """Test MediaRecord helpers."""

    def test_best_and_sizes(self) -> None:
        variants = {
            "md-webp": MediaVariant("md", "webp", 10, 5, "/o/a", "/_media/a"),
            "md-jpeg": MediaVariant("md", "jpeg", 10, 5, "/o/b", "/_media/b"),
        }
        record = MediaRecord(hash="x", path="x.png", file_name="x.png", mime_type="image/png",
                             variants=variants, best_key="md-webp")

        assert record.best is variants["md-webp"]
        assert len(record.variants_for_size("md")) == 2
        assert record.variants_for_size("sm") == []

    def test_from_dict_marks_reused(self) -> None:
        variant = MediaVariant("sm", "webp", 1, 1, "/o", "/_media/o", bytes=12)
        record = MediaRecord(hash="x", path="x.png", file_name="x.png", mime_type="image/png",
                             variants={variant.key: variant}, best_key=variant.key, url="/_media/o")

        restored = MediaRecord.from_dict(record.to_dict())

        assert restored.url == "/_media/o"
        assert restored.variants["sm-webp"].bytes == 12
        assert restored.variants["sm-webp"].reused is True
        assert restored.best_key == "sm-webp"
