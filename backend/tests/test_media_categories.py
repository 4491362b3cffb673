import pytest

from communitymedia.utils.media_categories import (
    BUCKETS,
    UnknownCategoryError,
    category_for_alias,
    category_for_bucket,
    category_for_reference,
    get_category,
    iter_categories,
    resolve_category,
)


def test_registry_is_consistent():
    categories = list(iter_categories())
    assert len({category.key for category in categories}) == len(categories)
    assert len(BUCKETS) == len(categories)
    for category in categories:
        assert category.bucket == category.bucket.upper()
        assert category.directories
        assert category.primary_directory == category.directories[0]


def test_calendar_is_the_only_flat_category():
    assert [category.key for category in iter_categories() if category.flat] == ["calendar"]


def test_lookups():
    assert get_category("Forum").bucket == "FORUM"
    assert category_for_bucket("vendors").key == "vendors"
    assert category_for_bucket("NOPE") is None
    assert category_for_alias("events").key == "calendar"
    assert category_for_alias("Real Estate").key == "sale"
    assert category_for_alias("") is None
    assert resolve_category(None) is None
    assert resolve_category(get_category("banner")).key == "banner"


def test_unknown_category_raises():
    with pytest.raises(UnknownCategoryError):
        get_category("nonexistent")


def test_reference_marker_earliest_match_wins():
    assert category_for_reference("/uploads/forum-media/calendar/x.png").key == "forum"
    assert category_for_reference("uploads/calendar/forum/x.png").key == "calendar"
    assert category_for_reference("/static/x.png") is None
    assert category_for_reference(None) is None
