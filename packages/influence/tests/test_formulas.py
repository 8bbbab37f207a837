"""Tests for estimator formulas."""

import numpy as np
import pytest
from scipy import integrate
from scipy import stats as scipy_stats

from src.errors import DegenerateRatioError, MissingNuisanceParameterError
from src.formulas import FORMULAS, get_formula, quotient_rule
from src.nuisance import normal_nuisance
from src.types import Estimator, EstimatorSpec, Threshold


GRID = np.linspace(-0.05, 0.05, 11)


class TestQuotientRule:
    """Tests for quotient_rule function."""

    @pytest.mark.parametrize(
        "if_g, g, if_h, h",
        [
            (0.5, 1.0, 0.2, 2.0),
            (-1.0, 0.3, 0.7, 0.5),
            (2.0, -0.4, -1.5, 1.5),
            (0.0, 2.0, 1.0, -3.0),
            (1.2, 0.0, 4.0, 0.25),
            (-0.3, 5.0, 0.0, 10.0),
        ],
    )
    def test_matches_hand_derived(self, if_g: float, g: float, if_h: float, h: float) -> None:
        """Test combination equals (IF(g) h - g IF(h)) / h^2."""
        expected = (if_g * h - g * if_h) / h**2
        assert float(quotient_rule(if_g, g, if_h, h)) == pytest.approx(expected)

    def test_arrays(self) -> None:
        """Test elementwise evaluation over arrays."""
        if_g = np.array([1.0, 2.0, 3.0])
        if_h = np.array([0.5, 0.0, -0.5])
        result = quotient_rule(if_g, 2.0, if_h, 4.0)
        np.testing.assert_allclose(result, (if_g * 4.0 - 2.0 * if_h) / 16.0)

    def test_zero_denominator(self) -> None:
        """Test zero denominator raises DegenerateRatioError."""
        with pytest.raises(DegenerateRatioError):
            quotient_rule(1.0, 1.0, 1.0, 0.0)


class TestFormulaTable:
    """Tests for the FORMULAS table."""

    def test_covers_every_estimator(self) -> None:
        """Test every estimator has exactly one formula."""
        assert set(FORMULAS) == set(Estimator)
        for estimator, formula in FORMULAS.items():
            assert formula.estimator is estimator

    def test_ratio_estimators(self) -> None:
        """Test ratio estimators are composed from two components."""
        ratios = {
            Estimator.SR, Estimator.SOR, Estimator.DSR, Estimator.ES_RATIO,
            Estimator.VAR_RATIO, Estimator.RACHEV_RATIO, Estimator.OMEGA,
        }
        for estimator, formula in FORMULAS.items():
            assert formula.is_ratio == (estimator in ratios)

    def test_read_only(self) -> None:
        """Test the table cannot be modified."""
        with pytest.raises(TypeError):
            FORMULAS[Estimator.MEAN] = FORMULAS[Estimator.SD]

    def test_lookup_by_name(self) -> None:
        """Test lookup accepts the string identifier."""
        assert get_formula("RachevRatio") is FORMULAS[Estimator.RACHEV_RATIO]

    @pytest.mark.parametrize("estimator", list(Estimator))
    def test_finite_under_normal_model(self, estimator: Estimator) -> None:
        """Test every formula is finite over a grid under normal nuisance values."""
        spec = EstimatorSpec(estimator)
        nuisance = normal_nuisance(spec, mean=0.001, sd=0.02)
        values = get_formula(estimator)(GRID, nuisance, spec)
        assert values.shape == GRID.shape
        assert np.all(np.isfinite(values))


class TestMeanFormula:
    """Tests for the Mean influence function."""

    def test_zero_at_mean(self) -> None:
        """Test IF(mean) = 0."""
        spec = EstimatorSpec(Estimator.MEAN)
        assert float(get_formula("Mean")(0.003, {"mean": 0.003}, spec)) == pytest.approx(0.0)

    def test_linear(self) -> None:
        """Test IF(x) = x - mean."""
        spec = EstimatorSpec(Estimator.MEAN)
        np.testing.assert_allclose(get_formula("Mean")(GRID, {"mean": 0.01}, spec), GRID - 0.01)


class TestSDFormula:
    """Tests for the SD influence function."""

    def test_baseline_at_mean(self) -> None:
        """Test IF(mean) = -sd/2."""
        spec = EstimatorSpec(Estimator.SD)
        result = get_formula("SD")(0.002, {"mean": 0.002, "sd": 0.04}, spec)
        assert float(result) == pytest.approx(-0.02)

    def test_zero_at_one_sd(self) -> None:
        """Test IF vanishes at mean +/- sd."""
        spec = EstimatorSpec(Estimator.SD)
        result = get_formula("SD")(np.array([-0.03, 0.05]), {"mean": 0.01, "sd": 0.04}, spec)
        np.testing.assert_allclose(result, 0.0, atol=1e-15)

    def test_zero_sd(self) -> None:
        """Test zero sd raises DegenerateRatioError."""
        spec = EstimatorSpec(Estimator.SD)
        with pytest.raises(DegenerateRatioError):
            get_formula("SD")(GRID, {"mean": 0.0, "sd": 0.0}, spec)


class TestVaRFormula:
    """Tests for the VaR influence function."""

    def test_piecewise_constant(self) -> None:
        """Test the two levels on either side of the quantile."""
        spec = EstimatorSpec(Estimator.VAR, alpha=0.05)
        nuisance = {"quantile": -0.02, "density": 4.0}
        result = get_formula("VaR")(np.array([-0.03, -0.02, -0.01, 0.04]), nuisance, spec)
        np.testing.assert_allclose(result, [-0.95 / 4.0, -0.95 / 4.0, 0.05 / 4.0, 0.05 / 4.0])

    def test_zero_density(self) -> None:
        """Test zero density raises DegenerateRatioError."""
        spec = EstimatorSpec(Estimator.VAR)
        with pytest.raises(DegenerateRatioError):
            get_formula("VaR")(GRID, {"quantile": 0.0, "density": 0.0}, spec)


class TestESFormula:
    """Tests for the ES influence function."""

    def test_constant_above_quantile(self) -> None:
        """Test IF = -q - es above the quantile."""
        spec = EstimatorSpec(Estimator.ES, alpha=0.05)
        nuisance = {"quantile": -0.03, "es": 0.04}
        result = get_formula("ES")(np.array([0.0, 0.02]), nuisance, spec)
        np.testing.assert_allclose(result, [0.03 - 0.04, 0.03 - 0.04])

    def test_linear_below_quantile(self) -> None:
        """Test slope -1/alpha below the quantile."""
        spec = EstimatorSpec(Estimator.ES, alpha=0.05)
        nuisance = {"quantile": -0.03, "es": 0.04}
        x = np.array([-0.05, -0.04])
        result = get_formula("ES")(x, nuisance, spec)
        np.testing.assert_allclose(result, (-0.03 - x) / 0.05 + 0.03 - 0.04)

    def test_zero_mean_under_normal_model(self) -> None:
        """Test the IF integrates to zero under the model it was derived for."""
        spec = EstimatorSpec(Estimator.ES, alpha=0.05)
        nuisance = normal_nuisance(spec, mean=0.0, sd=1.0)
        z = np.linspace(-10.0, 10.0, 200001)
        integrand = get_formula("ES")(z, nuisance, spec) * scipy_stats.norm.pdf(z)
        assert integrate.trapezoid(integrand, z) == pytest.approx(0.0, abs=1e-4)


class TestSharpeFormula:
    """Tests for the SR influence function."""

    @pytest.mark.parametrize("x", [-0.05, -0.01, 0.0, 0.004, 0.02, 0.08])
    def test_matches_closed_form(self, x: float) -> None:
        """Test SR IF equals its closed form."""
        mu, sigma, rf = 0.004, 0.02, 0.001
        spec = EstimatorSpec(Estimator.SR, risk_free=rf)
        expected = (x - mu) / sigma - (mu - rf) * ((x - mu) ** 2 - sigma**2) / (2 * sigma**3)
        result = get_formula("SR")(x, {"mean": mu, "sd": sigma}, spec)
        assert float(result) == pytest.approx(expected)

    def test_zero_sd(self) -> None:
        """Test zero denominator raises DegenerateRatioError."""
        spec = EstimatorSpec(Estimator.SR)
        with pytest.raises(DegenerateRatioError):
            get_formula("SR")(GRID, {"mean": 0.01, "sd": 0.0}, spec)

    def test_missing_sd(self) -> None:
        """Test missing sd raises MissingNuisanceParameterError naming the key."""
        spec = EstimatorSpec(Estimator.SR)
        with pytest.raises(MissingNuisanceParameterError) as excinfo:
            get_formula("SR")(GRID, {"mean": 0.01}, spec)
        assert excinfo.value.context["key"] == "sd"
        assert excinfo.value.context["estimator"] == "SR"


class TestPartialMomentFormulas:
    """Tests for LPM, SemiSD and Omega influence functions."""

    def test_lpm_const_threshold(self) -> None:
        """Test LPM IF with a constant threshold."""
        spec = EstimatorSpec(Estimator.LPM, moment=2, const=0.0)
        x = np.array([-0.02, 0.0, 0.03])
        result = get_formula("LPM")(x, {"lpm": 0.0001}, spec)
        np.testing.assert_allclose(result, [0.0004 - 0.0001, -0.0001, -0.0001])

    def test_lpm_mean_threshold_needs_lower_moment(self) -> None:
        """Test the mean threshold requires mean and lpm_lower."""
        spec = EstimatorSpec(Estimator.LPM, threshold=Threshold.MEAN)
        assert get_formula("LPM").required(spec) == ("lpm", "mean", "lpm_lower")

    def test_semisd_default_mean_threshold(self) -> None:
        """Test SemiSD defaults to the mean threshold."""
        spec = EstimatorSpec(Estimator.SEMI_SD)
        assert get_formula("SemiSD").required(spec) == ("semisd", "mean", "lpm1")

    def test_dsr_scales_semisd(self) -> None:
        """Test DSR value is excess mean over sqrt(2) semi-deviation."""
        spec = EstimatorSpec(Estimator.DSR)
        nuisance = {"mean": 0.01, "semisd": 0.02, "lpm1": 0.008}
        assert get_formula("DSR").value(nuisance, spec) == pytest.approx(0.01 / (np.sqrt(2) * 0.02))

    def test_omega_value(self) -> None:
        """Test Omega value is UPM1 / LPM1."""
        spec = EstimatorSpec(Estimator.OMEGA)
        assert get_formula("Omega").value({"upm1": 0.03, "lpm1": 0.02}, spec) == pytest.approx(1.5)

    def test_omega_zero_lpm(self) -> None:
        """Test Omega with no downside raises DegenerateRatioError."""
        spec = EstimatorSpec(Estimator.OMEGA)
        with pytest.raises(DegenerateRatioError):
            get_formula("Omega")(GRID, {"upm1": 0.03, "lpm1": 0.0}, spec)


class TestRobMeanFormula:
    """Tests for the robMean influence function."""

    @pytest.mark.parametrize("family", ["mopt", "opt", "bisquare"])
    def test_zero_at_location(self, family: str) -> None:
        """Test IF(location) = 0."""
        spec = EstimatorSpec(Estimator.ROB_MEAN, family=family)
        nuisance = normal_nuisance(spec, mean=0.01, sd=0.02)
        assert float(get_formula("robMean")(0.01, nuisance, spec)) == pytest.approx(0.0, abs=1e-12)

    @pytest.mark.parametrize("family", ["mopt", "opt", "bisquare"])
    def test_rejects_gross_outliers(self, family: str) -> None:
        """Test the IF vanishes far from the location."""
        spec = EstimatorSpec(Estimator.ROB_MEAN, family=family)
        nuisance = {"location": 0.0, "scale": 0.01, "psi_slope": 1.0}
        result = get_formula("robMean")(np.array([-1.0, 1.0]), nuisance, spec)
        np.testing.assert_allclose(result, 0.0)

    def test_mopt_linear_near_centre(self) -> None:
        """Test mopt IF is scale * u / slope for |u| <= 1."""
        spec = EstimatorSpec(Estimator.ROB_MEAN, family="mopt")
        nuisance = {"location": 0.0, "scale": 0.01, "psi_slope": 0.9}
        x = np.array([-0.008, 0.005])
        np.testing.assert_allclose(get_formula("robMean")(x, nuisance, spec), x / 0.9)
