"""Tests for the joint model fit and per-contrast extraction.

The fit tests run PyDESeq2 on the small synthetic experiment from conftest.
"""

from unittest.mock import MagicMock

import pandas as pd
import pytest

from conftest import N_CHANGED
from rnapath.config import DEConfig
from rnapath.contrasts import ContrastEstimator, FittedModel, build_design
from rnapath.samples import SampleRecord, SampleSheet


def _same(a, b):
    if a is None or b is None:
        return a is b
    return a == pytest.approx(b)


@pytest.fixture(scope="module")
def model():
    from conftest import make_counts, make_sheet

    sheet = make_sheet()
    return ContrastEstimator(DEConfig(n_cpus=1)).fit(make_counts(sheet), sheet)


class TestBuildDesign:
    def test_batch_included(self, sheet):
        assert build_design(sheet, DEConfig()) == "~batch + condition"

    def test_single_batch(self):
        records = (SampleRecord("S1", "A", "1"), SampleRecord("S2", "B", "1"))
        assert build_design(SampleSheet(records, "A"), DEConfig()) == "~condition"

    def test_single_batch_fit(self):
        from conftest import make_counts

        records = tuple(
            SampleRecord(f"{condition}_{i}", condition, "b1")
            for condition in ("DMSO", "CPDA")
            for i in range(1, 4)
        )
        sheet = SampleSheet(records, "DMSO")
        model = ContrastEstimator(DEConfig(n_cpus=1)).fit(make_counts(sheet), sheet)

        assert model.design == "~condition"
        result = model.contrast("CPDA")
        assert result.provenance.design == "~condition"
        assert result.provenance.n_treatment_samples == 3
        assert all(g.log2_fold_change > 1.5 for g in result.genes[:N_CHANGED])


class TestFitValidation:
    def test_empty_counts(self, sheet):
        with pytest.raises(ValueError, match="empty"):
            ContrastEstimator().fit(pd.DataFrame(columns=sheet.sample_ids), sheet)

    def test_unaligned_counts(self, counts, sheet):
        with pytest.raises(ValueError, match="aligned"):
            ContrastEstimator().fit(counts[list(reversed(counts.columns))], sheet)

    def test_no_treatment(self):
        records = (SampleRecord("S1", "A", "1"), SampleRecord("S2", "A", "1"))
        sheet = SampleSheet(records, "A")
        counts = pd.DataFrame({"S1": [10], "S2": [12]}, index=["G1"])
        with pytest.raises(ValueError, match="treatment"):
            ContrastEstimator().fit(counts, sheet)


class TestJointFit:
    def test_one_result_per_treatment(self, model):
        results = model.contrasts()
        assert [r.name for r in results] == ["CPDA_vs_DMSO", "CPDB_vs_DMSO"]
        for r in results:
            assert r.provenance.design == "~batch + condition"
            assert r.provenance.n_treatment_samples == 4
            assert r.provenance.n_samples_total == 12

    def test_genes_in_model_order(self, model):
        result = model.contrast("CPDA")
        assert [g.gene_id for g in result.genes] == model.gene_ids

    def test_recovers_direction(self, model):
        cpda = model.contrast("CPDA")
        induced = cpda.genes[:N_CHANGED]
        assert all(g.log2_fold_change > 1.5 for g in induced)
        # Cooks filtering may blank an occasional p-value
        assert sum(g.is_significant(0.05) for g in induced) >= N_CHANGED - 1

        cpdb = model.contrast("CPDB")
        repressed = cpdb.genes[N_CHANGED:2 * N_CHANGED]
        assert all(g.log2_fold_change < -1.5 for g in repressed)

    def test_extraction_does_not_refit(self, model):
        size_factors = model.size_factors.copy()
        first = model.contrast("CPDA")
        model.contrast("CPDB")
        again = model.contrast("CPDA")
        pd.testing.assert_series_equal(model.size_factors, size_factors)
        assert [g.pvalue for g in first.genes] == [g.pvalue for g in again.genes]

    def test_deterministic(self, model, counts, sheet):
        refit = ContrastEstimator(DEConfig(n_cpus=1)).fit(counts, sheet)
        a = model.contrast("CPDA")
        b = refit.contrast("CPDA")
        for ga, gb in zip(a.genes, b.genes):
            assert ga.log2_fold_change == pytest.approx(gb.log2_fold_change, abs=1e-6)

    def test_shrinkage_leaves_wald_values(self, model):
        plain = model.contrast("CPDA", shrink=False)
        shrunk = model.contrast("CPDA", shrink=True)
        assert shrunk.provenance.shrunk
        for p, s in zip(plain.genes, shrunk.genes):
            assert p.log2_fold_change == s.log2_fold_change
            assert _same(p.pvalue, s.pvalue)
            assert _same(p.pvalue_adjusted, s.pvalue_adjusted)
            assert p.log2_fold_change_shrunk is None
        assert any(g.log2_fold_change_shrunk is not None for g in shrunk.genes)

    def test_reference_contrast_rejected(self, model):
        with pytest.raises(ValueError, match="reference"):
            model.contrast("DMSO")

    def test_unknown_condition(self, model):
        with pytest.raises(ValueError, match="Unknown condition"):
            model.contrast("CPDZ")

    def test_normalized_counts_shape(self, model):
        normed = model.normalized_counts()
        assert list(normed.columns) == model.sheet.sample_ids
        assert list(normed.index) == model.gene_ids


class TestCoefficientName:
    def _model(self, columns):
        dds = MagicMock()
        dds.obsm = {"design_matrix": pd.DataFrame(columns=columns)}
        records = (SampleRecord("S1", "DMSO", "1"), SampleRecord("S2", "CPDA", "1"))
        return FittedModel(dds, SampleSheet(records, "DMSO"), "~condition", DEConfig(), MagicMock())

    def test_formulaic_name(self):
        model = self._model(["Intercept", "condition[T.CPDA]"])
        assert model._coefficient_name("CPDA") == "condition[T.CPDA]"

    def test_legacy_name(self):
        model = self._model(["intercept", "condition_CPDA_vs_DMSO"])
        assert model._coefficient_name("CPDA") == "condition_CPDA_vs_DMSO"

    def test_missing(self):
        with pytest.raises(ValueError, match="design coefficient"):
            self._model(["Intercept"])._coefficient_name("CPDA")
