"""Tests for ordi.ordination module."""

import dataclasses
import logging

import numpy as np
import pytest
from scipy import stats as sp_stats
from scipy.spatial.distance import pdist, squareform

from ordi.distance import dissimilarity
from ordi.errors import (
    AxisOutOfRangeError,
    DegenerateDissimilarityError,
    MalformedInputError,
    UnsupportedMethodError,
)
from ordi.io import CommunityTable
from ordi.ordination import (
    NMDSConfig,
    OrdinationMethod,
    ca,
    nmds,
    pca,
    pcoa,
    run_ordination,
)
from ordi.tests.fixtures import generate_gradient_community, generate_two_group_table


class TestPCA:
    def test_basic(self):
        table, _ = generate_gradient_community()
        result = pca(table)
        assert result.method is OrdinationMethod.PCA
        assert result.rank <= table.n_samples - 1
        assert result.sample_scores.shape == (table.n_samples, result.rank)
        assert result.attribute_scores.shape == (table.n_attributes, result.rank)
        assert result.explained_variance.sum() == pytest.approx(1.0)
        assert np.all(np.diff(result.eigenvalues) <= 1e-12)

    def test_two_dominant_axes(self):
        table, _ = generate_gradient_community()
        result = pca(table)
        first_two = result.explained_variance[:2].sum()
        assert 0.0 < first_two < 1.0
        assert result.cumulative_variance[1] == pytest.approx(first_two)

    def test_eigenvalues_sum_to_total_variance(self):
        table, _ = generate_gradient_community()
        result = pca(table)
        total = table.values.var(axis=0, ddof=1).sum()
        assert result.eigenvalues.sum() == pytest.approx(total)

    def test_scaling_1_matches_principal_components(self):
        table, _ = generate_gradient_community()
        result = pca(table, scaling=1)
        centered = table.values - table.values.mean(axis=0)
        # projection of centered data on the loadings
        projected = centered @ result.attribute_scores
        np.testing.assert_allclose(result.sample_scores, projected, atol=1e-8)

    def test_deterministic(self):
        table, _ = generate_gradient_community()
        a = pca(table)
        b = pca(table)
        np.testing.assert_array_equal(a.explained_variance, b.explained_variance)
        np.testing.assert_array_equal(a.sample_scores, b.sample_scores)
        np.testing.assert_array_equal(a.attribute_scores, b.attribute_scores)

    def test_rank_bound_with_few_samples(self):
        table = generate_two_group_table()
        result = pca(table)
        assert result.rank <= min(table.n_samples - 1, table.n_attributes)

    def test_scaled_constant_attribute(self):
        table = CommunityTable(
            sample_ids=["s1", "s2", "s3"],
            attribute_ids=["a", "b"],
            values=np.array([[1.0, 2.0], [1.0, 3.0], [1.0, 5.0]]),
        )
        with pytest.raises(MalformedInputError, match="constant"):
            pca(table, scale=True)

    def test_no_variation(self):
        table = CommunityTable(
            sample_ids=["s1", "s2"],
            attribute_ids=["a"],
            values=np.array([[1.0], [1.0]]),
        )
        with pytest.raises(MalformedInputError):
            pca(table)


class TestCA:
    def test_basic(self):
        table, _ = generate_gradient_community()
        result = ca(table)
        assert result.method is OrdinationMethod.CA
        assert result.rank <= min(table.n_samples - 1, table.n_attributes - 1)
        assert result.explained_variance.sum() == pytest.approx(1.0)
        assert result.attribute_scores.shape == (table.n_attributes, result.rank)

    def test_total_inertia_is_chi_square_over_n(self):
        table, _ = generate_gradient_community()
        result = ca(table)
        chi2 = sp_stats.chi2_contingency(table.values, correction=False)[0]
        assert result.diagnostics["total_inertia"] == pytest.approx(chi2 / table.values.sum())

    def test_scaling_2_sample_scores_are_standardized(self):
        table, _ = generate_gradient_community()
        result = ca(table, scaling=2)
        weights = table.row_totals() / table.values.sum()
        weighted_var = (weights[:, None] * result.sample_scores**2).sum(axis=0)
        np.testing.assert_allclose(weighted_var, np.ones(result.rank), rtol=1e-8)

    def test_empty_sample_rejected(self):
        table = CommunityTable(
            sample_ids=["s1", "s2", "s3"],
            attribute_ids=["a", "b"],
            values=np.array([[1.0, 2.0], [0.0, 0.0], [3.0, 1.0]]),
        )
        with pytest.raises(MalformedInputError, match="s2"):
            ca(table)

    def test_empty_attribute_rejected(self):
        table = CommunityTable(
            sample_ids=["s1", "s2", "s3"],
            attribute_ids=["a", "b", "c"],
            values=np.array([[1.0, 0.0, 2.0], [2.0, 0.0, 1.0], [3.0, 0.0, 1.0]]),
        )
        with pytest.raises(MalformedInputError, match="empty: b"):
            ca(table)


class TestPCoA:
    def test_euclidean_pcoa_matches_pca(self):
        table, _ = generate_gradient_community()
        coords = pcoa(dissimilarity(table, "euclidean")).sample_scores
        pcs = pca(table, scaling=1).sample_scores
        k = min(coords.shape[1], pcs.shape[1], 3)
        np.testing.assert_allclose(np.abs(coords[:, :k]), np.abs(pcs[:, :k]), atol=1e-6)

    def test_two_identical_samples(self):
        table = CommunityTable(
            sample_ids=["s1", "s2", "s3"],
            attribute_ids=["a", "b"],
            values=np.array([[10.0, 20.0], [10.0, 20.0], [100.0, 5.0]]),
        )
        result = pcoa(dissimilarity(table))
        np.testing.assert_array_almost_equal(result.sample_scores[0], result.sample_scores[1])
        assert result.attribute_scores is None


class TestNMDS:
    def test_basic(self):
        table, _ = generate_gradient_community()
        result = nmds(table, NMDSConfig(n_restarts=3))
        assert result.method is OrdinationMethod.NMDS
        assert result.sample_scores.shape == (table.n_samples, 2)
        assert result.attribute_scores.shape == (table.n_attributes, 2)
        assert result.stress is not None and result.stress >= 0
        assert result.explained_variance is None
        expected_steps = ["wisconsin"] if table.values.max() > 9 else []
        assert result.diagnostics["transform"] == expected_steps
        assert len(result.diagnostics["restart_stresses"]) == 3
        assert result.stress == min(result.diagnostics["restart_stresses"])

    def test_more_restarts_never_worse(self):
        table, _ = generate_gradient_community()
        one = nmds(table, NMDSConfig(n_restarts=1, random_state=7))
        many = nmds(table, NMDSConfig(n_restarts=5, random_state=7))
        assert many.stress <= one.stress
        assert many.diagnostics["restart_stresses"][0] == pytest.approx(
            one.diagnostics["restart_stresses"][0]
        )

    def test_deterministic_with_seed(self):
        table, _ = generate_gradient_community()
        a = nmds(table, NMDSConfig(n_restarts=2, random_state=3))
        b = nmds(table, NMDSConfig(n_restarts=2, random_state=3))
        assert a.stress == b.stress
        np.testing.assert_array_equal(a.sample_scores, b.sample_scores)

    def test_groups_separate(self):
        table = generate_two_group_table()
        result = nmds(table, NMDSConfig(n_restarts=4, transform="none"))
        d = squareform(pdist(result.sample_scores))
        within = np.mean([d[0, 1], d[0, 2], d[1, 2], d[3, 4], d[3, 5], d[4, 5]])
        between = d[:3, 3:].mean()
        assert within < between

    def test_too_many_axes(self):
        table = generate_two_group_table()
        with pytest.raises(AxisOutOfRangeError):
            nmds(table, NMDSConfig(n_axes=6))

    def test_centered_embedding(self):
        table, _ = generate_gradient_community()
        result = nmds(table, NMDSConfig(n_restarts=2))
        np.testing.assert_allclose(result.sample_scores.mean(axis=0), [0.0, 0.0], atol=1e-10)

    def test_high_stress_logs_warning(self, caplog):
        table, _ = generate_gradient_community()
        with caplog.at_level(logging.WARNING, logger="ordi.ordination"):
            result = nmds(table, NMDSConfig(n_restarts=1, stress_warning=0.0))
        assert result.stress > 0
        assert "interpret the ordination with care" in caplog.text

    def test_low_stress_threshold_not_crossed(self, caplog):
        table = generate_two_group_table()
        with caplog.at_level(logging.WARNING, logger="ordi.ordination"):
            nmds(table, NMDSConfig(n_restarts=1, transform="none", stress_warning=1.0))
        assert "interpret the ordination with care" not in caplog.text

    def test_no_finite_stress(self, monkeypatch):
        class NaNStressMDS:
            def __init__(self, n_components, **kwargs):
                self.n_components = n_components

            def fit_transform(self, dm, init=None):
                self.stress_ = np.nan
                self.n_iter_ = 1
                return np.zeros((dm.shape[0], self.n_components))

        monkeypatch.setattr("sklearn.manifold.MDS", NaNStressMDS)
        table, _ = generate_gradient_community()
        with pytest.raises(DegenerateDissimilarityError, match="no finite stress"):
            nmds(table, NMDSConfig(n_restarts=2))


class TestRunOrdination:
    def test_dispatch(self):
        table, _ = generate_gradient_community()
        assert run_ordination(table, "pca").method is OrdinationMethod.PCA
        assert run_ordination(table, "CA").method is OrdinationMethod.CA
        assert run_ordination(table, "nmds", n_restarts=2).method is OrdinationMethod.NMDS
        assert run_ordination(table, "pcoa", metric="jaccard").diagnostics["metric"] == "jaccard"

    def test_unsupported_method(self):
        table, _ = generate_gradient_community()
        with pytest.raises(UnsupportedMethodError):
            run_ordination(table, "dca")

    def test_config_and_keywords_conflict(self):
        table, _ = generate_gradient_community()
        with pytest.raises(TypeError, match="n_restarts"):
            run_ordination(table, "nmds", config=NMDSConfig(n_restarts=2), n_restarts=5)

    def test_single_sample(self):
        table = CommunityTable(sample_ids=["s1"], attribute_ids=["a", "b"], values=np.array([[1.0, 2.0]]))
        with pytest.raises(MalformedInputError, match="at least 2"):
            run_ordination(table, "pca")

    def test_result_is_immutable(self):
        table, _ = generate_gradient_community()
        result = run_ordination(table, "pca")
        with pytest.raises(ValueError):
            result.sample_scores[0, 0] = 99.0
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.stress = 0.1
        with pytest.raises(TypeError):
            result.diagnostics["scale"] = True
