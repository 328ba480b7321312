"""
Tests for the criteria comparison driver.
"""

import pytest

import gridsubset.criteria_comparison as cc
from gridsubset.criteria_comparison import compare_criteria, compare_k
from gridsubset.kpoints import KpointsConfig
from gridsubset.utils import ConfigurationError

OPTIONS = dict(n_starts=10, min_area=0.0, max_iter=20, seed=4)


class TestCompareCriteria:

    def test_one_row_per_criteria_vector(self, four_cells, km_template):
        comparison = compare_criteria(four_cells, [[1.0], [0.1]], 2, km_template, **OPTIONS)

        table = comparison.table
        assert list(table["criteria"]) == ["1", "0.1"]
        assert list(table["k"]) == [2, 2]
        assert table["represented_area_km2"].tolist() == pytest.approx([4.0, 2.0])
        assert comparison.total_area_km2 == pytest.approx(4.0)
        assert len(comparison.results) == 2

    def test_invalid_vector_rejected_before_any_run(self, four_cells, km_template, monkeypatch):
        calls = []
        monkeypatch.setattr(cc, "run_kpoints", lambda *a, **kw: calls.append(a))

        with pytest.raises(ConfigurationError):
            compare_criteria(four_cells, [[1.0], [0.0]], 2, km_template, **OPTIONS)
        assert calls == []

    def test_base_config_is_not_mutated(self, four_cells, km_template):
        base = KpointsConfig(criteria=[5.0], klist=[1, 2], **OPTIONS)
        compare_criteria(four_cells, [[1.0], [0.1]], 2, km_template, config=base)

        assert base.criteria == [5.0]
        assert base.klist == [1, 2]

    def test_empty_list_rejected(self, four_cells, km_template):
        with pytest.raises(ValueError):
            compare_criteria(four_cells, [], 2, km_template)


class TestCompareK:

    def test_one_row_per_k(self, four_cells_df, km_template):
        comparison = compare_k(four_cells_df, [1.0], [1, 2, 3], km_template, **OPTIONS)

        table = comparison.table
        assert list(table["k"]) == [1, 2, 3]
        assert list(table["label"]) == [1, 2, 3]
        assert table["represented_area_km2"].tolist() == pytest.approx([2.0, 4.0, 4.0])
        assert (table["total_area_km2"] == comparison.total_area_km2).all()
        assert table["represented_pct"].iloc[-1] == pytest.approx(100.0)

    def test_k_too_large_rejected(self, four_cells, km_template):
        with pytest.raises(ConfigurationError):
            compare_k(four_cells, [1.0], [2, 4], km_template, **OPTIONS)
