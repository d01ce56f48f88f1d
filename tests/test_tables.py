"""
Tests for table key normalisation and link parameter resolution.
"""

import pytest

from tableside.tables import (
    DELIVERY,
    TAKEAWAY,
    ResolutionSource,
    is_sentinel,
    normalize_table_key,
    resolve_table_key,
)


class TestNormalizeTableKey:

    @pytest.mark.parametrize("raw, expected", [
        ("7", "7"),
        ("007", "7"),
        (" T-12 ", "12"),
        ("table 3a", "3"),
        ("takeaway", TAKEAWAY),
        ("Delivery", DELIVERY),
        ("", None),
        ("000", None),
        ("abc", None),
        (None, None),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_table_key(raw) == expected

    def test_sentinels(self):
        assert is_sentinel(TAKEAWAY)
        assert is_sentinel(DELIVERY)
        assert not is_sentinel("7")
        assert not is_sentinel(None)


class TestResolveTableKey:

    def test_mode_wins_over_table(self):
        resolution = resolve_table_key({"mode": "takeaway", "table": "5"})

        assert resolution.table_key == TAKEAWAY
        assert resolution.source == ResolutionSource.LINK

    def test_delivery_mode(self):
        assert resolve_table_key({"mode": "delivery"}).table_key == DELIVERY

    def test_table_parameter_is_normalized(self):
        resolution = resolve_table_key({"table": "07"}, last_used="3")

        assert resolution.table_key == "7"
        assert resolution.source == ResolutionSource.LINK

    def test_falls_back_to_last_used(self):
        resolution = resolve_table_key({"table": "xx"}, last_used="3")

        assert resolution.table_key == "3"
        assert resolution.source == ResolutionSource.CACHE

    def test_unresolved_when_nothing_known(self):
        resolution = resolve_table_key({})

        assert not resolution.is_resolved
        assert resolution.source is None

    def test_merge_target_and_deliberate_choice(self):
        resolution = resolve_table_key({"table": "4", "merge": "12", "from": "chooser"})

        assert resolution.merge_target == 12
        assert resolution.deliberate is True

    def test_bad_merge_target_is_ignored(self):
        assert resolve_table_key({"table": "4", "merge": "abc"}).merge_target is None
