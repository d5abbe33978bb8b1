"""Bundle calculator: min over mappings of floor(available / multiplier)."""
import pytest

from multipack_hub.services.bundles import compute_bundle_count
from multipack_hub.services.rules import Mapping


def _lookup(levels):
    return lambda variant_id: levels.get(variant_id, 0)


class TestComputeBundleCount:
    def test_bottleneck_variant_wins(self):
        mappings = [Mapping("A", 2), Mapping("B", 1)]
        assert compute_bundle_count(mappings, _lookup({"A": 10, "B": 3})) == 3

    def test_floor_not_round(self):
        assert compute_bundle_count([Mapping("A", 3)], _lookup({"A": 7})) == 2

    def test_no_mappings_is_zero(self):
        assert compute_bundle_count([], _lookup({"A": 100})) == 0

    def test_negative_stock_never_negative(self):
        assert compute_bundle_count([Mapping("A", 2)], _lookup({"A": -5})) == 0

    def test_failing_lookup_counts_as_zero(self):
        def lookup(variant_id):
            if variant_id == "B":
                raise RuntimeError("timeout")
            return 50

        assert compute_bundle_count([Mapping("A", 1), Mapping("B", 1)], lookup) == 0

    def test_missing_variant_counts_as_zero(self):
        assert compute_bundle_count([Mapping("A", 1), Mapping("GONE", 1)], _lookup({"A": 9})) == 0

    @pytest.mark.parametrize(
        "levels, mappings, expected",
        [
            ({"A": 12}, [("A", 6)], 2),
            ({"A": 5, "B": 100}, [("A", 1), ("B", 10)], 5),
            ({"A": 9, "B": 9}, [("A", 3), ("B", 4)], 2),
        ],
    )
    def test_matches_min_floor_formula(self, levels, mappings, expected):
        ms = [Mapping(t, m) for t, m in mappings]
        assert compute_bundle_count(ms, _lookup(levels)) == expected
        assert expected == min(levels[t] // m for t, m in mappings)
