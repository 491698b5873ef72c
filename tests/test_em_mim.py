"""Tests for the complete genotyping EM solver."""

import warnings

import numpy as np
import pytest

from qtlemm import EMConfig, q_make
from qtlemm.em import em_mim
from qtlemm.em.likelihood import log_likelihood, posterior, uniform_fallback
from qtlemm.em.mim import m_step
from qtlemm.em.state import EMState
from qtlemm.errors import ConfigurationError, ConvergenceFailure, InputError


def _cp_for(sim, population="RI", ng=2):
    return q_make(sim["qtl"], sim["marker"], sim["geno"], population=population, ng=ng)


@pytest.mark.tier0
class TestLikelihoodTerms:
    def test_posterior_rows_sum_to_one(self, rng):
        cp = rng.dirichlet(np.ones(3), size=20)
        y = rng.normal(size=20)
        means = np.tile([1.0, 0.0, -1.0], (20, 1))
        post = posterior(cp, y, means, 0.8)
        np.testing.assert_allclose(post.sum(axis=1), 1.0)

    def test_zero_prior_stays_zero(self):
        cp = np.array([[0.0, 1.0, 0.0]])
        post = posterior(cp, np.array([5.0]), np.array([[5.0, 0.0, -5.0]]), 1.0)
        np.testing.assert_allclose(post, [[0.0, 1.0, 0.0]])

    def test_underflow_row_becomes_uniform(self):
        cp = np.array([[0.5, 0.5, 0.0], [0.2, 0.3, 0.5]])
        y = np.array([1e6, 0.0])
        means = np.zeros((2, 3))
        post = posterior(cp, y, means, 1.0)
        np.testing.assert_allclose(post[0], [1 / 3, 1 / 3, 1 / 3])
        assert np.all(np.isfinite(post))

    def test_uniform_fallback(self):
        w = np.array([[0.0, 0.0], [1.0, 3.0]])
        np.testing.assert_allclose(uniform_fallback(w), [[0.5, 0.5], [0.25, 0.75]])

    def test_log_likelihood_single_class(self):
        y = np.array([0.0, 1.0])
        cp = np.ones((2, 1))
        ll = log_likelihood(cp, y, np.zeros((2, 1)), 1.0)
        expected = -np.log(2 * np.pi) - 0.5
        assert ll == pytest.approx(expected)


@pytest.mark.tier0
class TestMStep:
    def test_known_genotypes_give_least_squares(self, rng):
        """With degenerate cp the M-step is ordinary regression."""
        g = rng.integers(0, 3, size=200)
        y = 2.0 + 0.7 * (g - 1) + rng.normal(0, 0.3, size=200)
        cp = np.eye(3)[2 - g]
        D = np.array([[1.0], [0.0], [-1.0]])
        X = np.ones((200, 1))
        state = EMState(effects=np.zeros(1), beta=np.array([y.mean()]), variance=1.0)

        for _ in range(50):
            state = m_step(y, X, D, cp, state)

        A = np.column_stack([np.ones(200), g - 1])
        coef = np.linalg.lstsq(A, y, rcond=None)[0]
        np.testing.assert_allclose(state.effects, coef[1:], atol=1e-8)
        np.testing.assert_allclose(state.beta, coef[:1], atol=1e-8)
        resid = y - A @ coef
        assert state.variance == pytest.approx(resid @ resid / 200, rel=1e-6)

    def test_returns_new_state(self, rng):
        y = rng.normal(size=10)
        state = EMState(effects=np.zeros(1), beta=np.zeros(1), variance=1.0)
        new = m_step(y, np.ones((10, 1)), np.ones((2, 1)), np.full((10, 2), 0.5), state)
        assert new is not state
        assert new.iteration == 1
        np.testing.assert_array_equal(state.effects, [0.0])


@pytest.mark.tier0
class TestEMConfig:
    @pytest.mark.parametrize("crit", [0.0, 1.0, -1e-3, 2.0, "small", True])
    def test_invalid_crit(self, crit):
        with pytest.raises(ConfigurationError, match="crit"):
            EMConfig(crit=crit).validate()

    @pytest.mark.parametrize("stop", [0, -5, 2.5, True, None])
    def test_invalid_stop(self, stop):
        with pytest.raises(ConfigurationError, match="stop"):
            EMConfig(stop=stop).validate()

    def test_valid_config_chains(self):
        config = EMConfig(crit=1e-3, stop=1)
        assert config.validate() is config

    def test_em_mim_validates_stop(self, f2_small):
        q = _cp_for(f2_small)
        with pytest.raises(ConfigurationError):
            em_mim(
                f2_small["design"],
                q.cp_matrix,
                f2_small["y"],
                config=EMConfig(stop=0),
            )


@pytest.mark.tier0
class TestEMInputValidation:
    def test_cp_shape_mismatch(self, f2_small):
        cp = np.full((10, 3), 1 / 3)
        with pytest.raises(InputError, match="cp-matrix"):
            em_mim(f2_small["design"], cp, f2_small["y"])

    def test_design_rows_must_match_classes(self, f2_small):
        q = _cp_for(f2_small)
        with pytest.raises(InputError, match="cp-matrix"):
            em_mim(np.ones((2, 1)), q.cp_matrix, f2_small["y"])

    def test_missing_phenotype(self, f2_small):
        q = _cp_for(f2_small)
        y = f2_small["y"].copy()
        y[3] = np.nan
        with pytest.raises(InputError, match="non-finite"):
            em_mim(f2_small["design"], q.cp_matrix, y)

    def test_phenotype_column_is_flattened(self, f2_small):
        q = _cp_for(f2_small)
        flat = em_mim(f2_small["design"], q.cp_matrix, f2_small["y"])
        column = em_mim(f2_small["design"], q.cp_matrix, f2_small["y"][:, None])
        np.testing.assert_array_equal(column.effects, flat.effects)
        assert column.y_hat.shape == (60,)
        assert column.log_likelihood == flat.log_likelihood

    def test_phenotype_matrix_rejected(self, f2_small):
        q = _cp_for(f2_small)
        y = np.tile(f2_small["y"][:, None], (1, 2))
        with pytest.raises(InputError, match="1-D"):
            em_mim(f2_small["design"], q.cp_matrix, y)

    def test_rank_deficient_covariates(self, f2_small):
        q = _cp_for(f2_small)
        n = f2_small["y"].size
        X = np.column_stack([np.ones(n), np.ones(n)])
        with pytest.raises(InputError, match="full column rank"):
            em_mim(f2_small["design"], q.cp_matrix, f2_small["y"], X=X)

    def test_effects0_length(self, f2_small):
        q = _cp_for(f2_small)
        with pytest.raises(InputError, match="effects0"):
            em_mim(f2_small["design"], q.cp_matrix, f2_small["y"], effects0=[0.0, 1.0])

    def test_nonpositive_variance0(self, f2_small):
        q = _cp_for(f2_small)
        with pytest.raises(InputError, match="variance"):
            em_mim(f2_small["design"], q.cp_matrix, f2_small["y"], variance0=0.0)

    def test_effect_name_count(self, f2_small):
        q = _cp_for(f2_small)
        with pytest.raises(InputError, match="effect names"):
            em_mim(
                f2_small["design"], q.cp_matrix, f2_small["y"], effect_names=["a", "d"]
            )


@pytest.mark.tier0
class TestEMRun:
    def test_result_fields(self, f2_small):
        q = _cp_for(f2_small)
        result = em_mim(
            f2_small["design"], q.cp_matrix, f2_small["y"], labels=q.labels
        )
        assert result.model == "complete genotyping model"
        assert result.effects.shape == (1,)
        assert result.effect_names == ["E1"]
        assert result.labels == ["2", "1", "0"]
        assert result.posterior.shape == (60, 3)
        np.testing.assert_allclose(result.posterior.sum(axis=1), 1.0)
        assert result.y_hat.shape == (60,)
        assert result.variance > 0
        assert 0 <= result.r2 <= 1
        assert result.converged
        assert len(result.trace) == result.iteration

    def test_deterministic(self, f2_small):
        q = _cp_for(f2_small)
        a = em_mim(f2_small["design"], q.cp_matrix, f2_small["y"])
        b = em_mim(f2_small["design"], q.cp_matrix, f2_small["y"])
        np.testing.assert_array_equal(a.effects, b.effects)
        assert a.variance == b.variance
        assert a.iteration == b.iteration

    def test_inputs_not_mutated(self, f2_small):
        q = _cp_for(f2_small)
        cp = q.cp_matrix.copy()
        y = f2_small["y"].copy()
        em_mim(f2_small["design"], cp, y)
        np.testing.assert_array_equal(cp, q.cp_matrix)
        np.testing.assert_array_equal(y, f2_small["y"])

    def test_log_likelihood_monotone(self, f2_single):
        q = _cp_for(f2_single)
        result = em_mim(f2_single["design"], q.cp_matrix, f2_single["y"])
        ll = np.asarray(result.trace.log_likelihood)
        assert np.all(np.diff(ll) >= -1e-8)

    def test_lrt_positive_for_real_qtl(self, f2_single):
        q = _cp_for(f2_single)
        result = em_mim(f2_single["design"], q.cp_matrix, f2_single["y"])
        assert result.lrt > 100
        assert result.r2 > 0.5

    def test_effects_by_name(self, f2_small):
        q = _cp_for(f2_small)
        result = em_mim(
            f2_small["design"], q.cp_matrix, f2_small["y"], effect_names=["add"]
        )
        assert list(result.effects_by_name) == ["add"]
        assert result.summary()["add"] == result.effects[0]


@pytest.mark.tier0
class TestConvergenceFailure:
    def test_strict_zeroes_estimates(self, f2_small):
        q = _cp_for(f2_small)
        with pytest.warns(ConvergenceFailure, match="failed to converge"):
            result = em_mim(
                f2_small["design"],
                q.cp_matrix,
                f2_small["y"],
                config=EMConfig(crit=1e-12, stop=1),
            )
        assert not result.converged
        np.testing.assert_array_equal(result.effects, [0.0])
        assert result.variance == 0.0
        assert result.log_likelihood == -np.inf
        assert result.lrt == 0.0
        assert result.r2 == 0.0

    def test_lenient_keeps_last_iterate(self, f2_small):
        q = _cp_for(f2_small)
        with pytest.warns(ConvergenceFailure):
            result = em_mim(
                f2_small["design"],
                q.cp_matrix,
                f2_small["y"],
                config=EMConfig(crit=1e-12, stop=1, strict=False),
            )
        assert not result.converged
        assert result.iteration == 1
        assert result.effects[0] != 0.0
        assert np.isfinite(result.log_likelihood)

    def test_failure_can_be_escalated(self, f2_small):
        q = _cp_for(f2_small)
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceFailure)
            with pytest.raises(ConvergenceFailure):
                em_mim(
                    f2_small["design"],
                    q.cp_matrix,
                    f2_small["y"],
                    config=EMConfig(crit=1e-12, stop=1),
                )

    def test_converged_fit_emits_no_warning(self, f2_small):
        q = _cp_for(f2_small)
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceFailure)
            result = em_mim(f2_small["design"], q.cp_matrix, f2_small["y"])
        assert result.converged


@pytest.mark.tier1
class TestEffectRecovery:
    def test_single_qtl(self, simulate, additive):
        sim = simulate(
            np.random.default_rng(42),
            n=4000,
            marker_cm=np.arange(0.0, 101.0, 10.0),
            qtl_cm=np.array([35.0]),
            effects=np.array([1.0]),
        )
        q = _cp_for(sim)
        result = em_mim(additive(1), q.cp_matrix, sim["y"])
        assert result.converged
        assert result.effects[0] == pytest.approx(1.0, abs=0.05)
        assert result.beta[0] == pytest.approx(10.0, abs=0.05)
        assert result.variance == pytest.approx(0.25, abs=0.03)

    def test_two_qtl(self, simulate, additive):
        sim = simulate(
            np.random.default_rng(3),
            n=1200,
            marker_cm=np.arange(0.0, 101.0, 10.0),
            qtl_cm=np.array([25.0, 75.0]),
            effects=np.array([1.0, -0.6]),
        )
        q = _cp_for(sim)
        result = em_mim(additive(2), q.cp_matrix, sim["y"], labels=q.labels)
        assert result.converged
        np.testing.assert_allclose(result.effects, [1.0, -0.6], atol=0.12)

    def test_covariate_recovered(self, simulate):
        rng = np.random.default_rng(11)
        sim = simulate(
            rng,
            n=800,
            marker_cm=np.arange(0.0, 101.0, 10.0),
            qtl_cm=np.array([52.0]),
            effects=np.array([0.8]),
        )
        sex = rng.integers(0, 2, size=800).astype(float)
        y = sim["y"] + 1.5 * sex
        X = np.column_stack([np.ones(800), sex])
        q = _cp_for(sim)
        result = em_mim(np.array([[1.0], [0.0], [-1.0]]), q.cp_matrix, y, X=X)
        assert result.beta[1] == pytest.approx(1.5, abs=0.12)
        assert result.effects[0] == pytest.approx(0.8, abs=0.12)

    def test_backcross_qtl(self, simulate):
        sim = simulate(
            np.random.default_rng(5),
            n=800,
            marker_cm=np.arange(0.0, 101.0, 10.0),
            qtl_cm=np.array([43.0]),
            effects=np.array([1.0]),
            population="BC",
        )
        q = _cp_for(sim, population="BC", ng=1)
        # BC classes (2, 1): effect of replacing the heterozygote by 2
        result = em_mim(np.array([[1.0], [0.0]]), q.cp_matrix, sim["y"])
        assert result.effects[0] == pytest.approx(1.0, abs=0.12)

    def test_no_qtl_gives_small_lrt(self, f2_single):
        rng = np.random.default_rng(99)
        y = rng.normal(10.0, 1.0, size=1000)
        q = _cp_for(f2_single)
        result = em_mim(f2_single["design"], q.cp_matrix, y)
        assert abs(result.effects[0]) < 0.15
        assert result.lrt < 15


@pytest.mark.tier0
class TestJaxBackend:
    def test_posterior_parity(self, rng):
        pytest.importorskip("jax")
        from qtlemm.em.likelihood_jax import log_likelihood_jax, posterior_jax

        cp = rng.dirichlet(np.ones(9), size=40)
        y = rng.normal(size=40)
        means = rng.normal(size=(40, 9))
        np.testing.assert_allclose(
            posterior_jax(cp, y, means, 0.7),
            posterior(cp, y, means, 0.7),
            rtol=1e-10,
            atol=1e-14,
        )
        assert log_likelihood_jax(cp, y, means, 0.7) == pytest.approx(
            log_likelihood(cp, y, means, 0.7), rel=1e-10
        )

    def test_underflow_parity(self):
        pytest.importorskip("jax")
        from qtlemm.em.likelihood_jax import posterior_jax

        cp = np.array([[0.5, 0.5], [1.0, 0.0]])
        y = np.array([1e6, 0.0])
        means = np.zeros((2, 2))
        post = posterior_jax(cp, y, means, 1.0)
        np.testing.assert_allclose(post, [[0.5, 0.5], [1.0, 0.0]])

    def test_em_backend_parity(self, f2_small):
        pytest.importorskip("jax")
        q = _cp_for(f2_small)
        D, cp, y = f2_small["design"], q.cp_matrix, f2_small["y"]
        np_fit = em_mim(D, cp, y, backend="numpy")
        jax_fit = em_mim(D, cp, y, backend="jax")
        np.testing.assert_allclose(jax_fit.effects, np_fit.effects, rtol=1e-8)
        assert jax_fit.lrt == pytest.approx(np_fit.lrt, rel=1e-8)
