"""Tests for population genotype frequencies and mixing proportions."""

from collections import defaultdict
from itertools import product

import numpy as np
import pytest

from qtlemm.em import mixture_proportions, population_frequencies
from qtlemm.errors import ConfigurationError, InputError


@pytest.mark.tier0
class TestSingleQTLFrequencies:
    @pytest.mark.parametrize("ng", [1, 2, 5])
    def test_backcross(self, ng):
        freq = population_frequencies([[1, 20.0]], "BC", ng)
        np.testing.assert_allclose(freq, [1 - 0.5**ng, 0.5**ng])

    @pytest.mark.parametrize("ng", [2, 3, 6])
    def test_recombinant_inbred(self, ng):
        h = 0.5 ** (ng - 1)
        freq = population_frequencies([[1, 20.0]], "RI", ng)
        np.testing.assert_allclose(freq, [(1 - h) / 2, h, (1 - h) / 2])

    def test_advanced_intercross(self):
        freq = population_frequencies([[1, 20.0]], "AI", 9)
        np.testing.assert_allclose(freq, [0.25, 0.5, 0.25])


@pytest.mark.tier0
class TestMultiQTLFrequencies:
    @pytest.mark.parametrize(
        "population, ng",
        [("BC", 1), ("BC", 3), ("RI", 2), ("RI", 4), ("AI", 2), ("AI", 5)],
    )
    def test_sums_to_one(self, population, ng):
        qtl = [[1, 20.0], [1, 45.0], [2, 10.0]]
        freq = population_frequencies(qtl, population, ng)
        n_codes = 2 if population == "BC" else 3
        assert freq.shape == (n_codes**3,)
        assert freq.sum() == pytest.approx(1.0, abs=1e-12)
        assert np.all(freq >= 0)

    @pytest.mark.parametrize("population, ng", [("BC", 2), ("RI", 3), ("AI", 4)])
    def test_unlinked_qtl_are_independent(self, population, ng):
        single = population_frequencies([[1, 20.0]], population, ng)
        pair = population_frequencies([[1, 20.0], [2, 20.0]], population, ng)
        np.testing.assert_allclose(pair, np.outer(single, single).ravel(), atol=1e-12)

    @pytest.mark.parametrize("ng", [2, 3, 6])
    def test_ai_marginals_match_single_qtl(self, ng):
        single = population_frequencies([[1, 0.0]], "AI", ng)
        pair = population_frequencies([[1, 0.0], [1, 15.0]], "AI", ng)
        nc = single.size
        marginal = pair.reshape(nc, nc).sum(axis=1)
        np.testing.assert_allclose(marginal, single, atol=1e-12)

    def test_f2_linked_pair(self):
        r = 0.5 * (1 - np.exp(-0.2))
        freq = population_frequencies([[1, 0.0], [1, 10.0]], "RI", 2)
        assert freq[0] == pytest.approx((1 - r) ** 2 / 4)
        assert freq[2] == pytest.approx(r**2 / 4)

    def test_morgan_positions(self):
        cm = population_frequencies([[1, 0.0], [1, 10.0]], "AI", 3)
        m = population_frequencies([[1, 0.0], [1, 0.1]], "AI", 3, cm=False)
        np.testing.assert_allclose(cm, m)

    def test_invalid_generation(self):
        with pytest.raises(ConfigurationError):
            population_frequencies([[1, 0.0]], "RI", 1)


def _backcross_by_enumeration(pos, ng):
    """Backcross class frequencies by enumerating every meiosis pattern.

    Tracks which loci still carry a P2 allele on the non-recurrent homolog
    and lets every locus, heterozygous or not, pick its transmitted homolog
    through adjacent-interval recombination.
    """
    r = 0.5 * (1 - np.exp(-2 * np.diff(pos)))
    q = len(pos)
    dist = {(True,) * q: 1.0}
    for _ in range(ng):
        nxt = defaultdict(float)
        for carries, p in dist.items():
            for strand in product((False, True), repeat=q):
                w = 0.5
                for a, b, rk in zip(strand, strand[1:], r):
                    w *= 1 - rk if a == b else rk
                child = tuple(c and s for c, s in zip(carries, strand))
                nxt[child] += p * w
        dist = nxt
    classes = product((2, 1), repeat=q)
    return np.array([dist.get(tuple(c == 1 for c in cls), 0.0) for cls in classes])


@pytest.mark.tier0
class TestBackcrossFrequencies:
    QTL = [[1, 10.0], [1, 25.0], [1, 40.0]]

    @pytest.mark.parametrize("ng", [1, 2, 3, 5])
    def test_marginals_match_single_qtl(self, ng):
        freq = population_frequencies(self.QTL, "BC", ng).reshape(2, 2, 2)
        expected = [1 - 0.5**ng, 0.5**ng]
        for axis in range(3):
            others = tuple(a for a in range(3) if a != axis)
            np.testing.assert_allclose(freq.sum(axis=others), expected, atol=1e-12)

    @pytest.mark.parametrize("ng", [1, 2, 3, 4])
    def test_matches_meiosis_enumeration(self, ng):
        freq = population_frequencies(self.QTL, "BC", ng)
        expected = _backcross_by_enumeration(np.array([0.10, 0.25, 0.40]), ng)
        np.testing.assert_allclose(freq, expected, atol=1e-12)

    def test_third_generation_values(self):
        freq = population_frequencies(self.QTL, "BC", 3)
        np.testing.assert_allclose(
            freq,
            [0.794, 0.0389, 0.0145, 0.0281, 0.0389, 0.0037, 0.0281, 0.0544],
            atol=5e-4,
        )

    @pytest.mark.parametrize("ng", [2, 3])
    def test_all_heterozygous_class(self, ng):
        r = 0.5 * (1 - np.exp(-0.3))
        freq = population_frequencies(self.QTL, "BC", ng)
        assert freq[-1] == pytest.approx((0.5 * (1 - r) ** 2) ** ng)

    def test_fixed_loci_stay_fixed(self):
        # P1 homozygotes never revert; linked hets are lost together w.p. (1 - r)/2
        bc1 = population_frequencies([[1, 0.0], [1, 20.0]], "BC", 1)
        bc2 = population_frequencies([[1, 0.0], [1, 20.0]], "BC", 2)
        r = 0.5 * (1 - np.exp(-0.4))
        lost = bc1[0] + bc1[1] / 2 + bc1[2] / 2 + bc1[3] * (1 - r) / 2
        assert bc2[0] == pytest.approx(lost)


@pytest.mark.tier0
class TestMixtureProportions:
    def test_population_model_uses_raw_frequencies(self):
        cp = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
        pop = np.array([0.25, 0.5, 0.25])
        mp = mixture_proportions(cp, 3, pop, corrected=False)
        assert mp.matrix.shape == (5, 3)
        np.testing.assert_array_equal(mp.matrix[:2], cp)
        np.testing.assert_allclose(mp.matrix[2:], np.tile(pop, (3, 1)))

    def test_corrected_model_subtracts_genotyped(self):
        cp = np.array([[1.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
        pop = np.array([0.25, 0.5, 0.25])
        mp = mixture_proportions(cp, 6, pop, corrected=True)
        # 0.25 - 2/8 = 0, 0.5 - 0 = 0.5, 0.25 - 0 = 0.25 -> renormalized
        np.testing.assert_allclose(mp.ungenotyped_freq, [0.0, 2 / 3, 1 / 3])
        np.testing.assert_allclose(mp.matrix[2:], np.tile(mp.ungenotyped_freq, (6, 1)))

    def test_negative_leftovers_clamped(self):
        cp = np.array([[1.0, 0.0, 0.0]] * 3)
        mp = mixture_proportions(cp, 1, np.array([0.25, 0.5, 0.25]))
        assert np.all(mp.ungenotyped_freq >= 0)
        assert mp.ungenotyped_freq.sum() == pytest.approx(1.0)
        assert mp.ungenotyped_freq[0] == 0.0

    def test_no_ungenotyped(self):
        cp = np.array([[0.2, 0.8], [0.5, 0.5]])
        mp = mixture_proportions(cp, 0, np.array([0.75, 0.25]))
        np.testing.assert_array_equal(mp.matrix, cp)

    def test_frequency_length_mismatch(self):
        with pytest.raises(InputError, match="classes"):
            mixture_proportions(np.ones((2, 3)) / 3, 2, np.array([0.5, 0.5]))

    def test_negative_count(self):
        with pytest.raises(InputError):
            mixture_proportions(np.ones((2, 2)) / 2, -1, np.array([0.5, 0.5]))
