"""Tests for core types and errors."""

import numpy as np
import pandas as pd
import pytest

from src.errors import (
    DegenerateRatioError,
    InfluenceFunctionError,
    InputValidationError,
    NonConvergenceError,
)
from src.types import (
    Estimator,
    EstimatorSpec,
    IFResult,
    ReturnSeries,
    RobustFamily,
    Threshold,
)


class TestEstimatorSpec:
    """Tests for EstimatorSpec dataclass."""

    @pytest.mark.parametrize(
        "estimator, expected",
        [
            (Estimator.SEMI_SD, Threshold.MEAN),
            (Estimator.DSR, Threshold.MEAN),
            (Estimator.LPM, Threshold.CONST),
            (Estimator.OMEGA, Threshold.CONST),
            (Estimator.SOR, Threshold.CONST),
        ],
    )
    def test_default_threshold(self, estimator: Estimator, expected: Threshold) -> None:
        """Test the threshold default per estimator."""
        assert EstimatorSpec(estimator).threshold is expected

    def test_dsr_always_mean(self) -> None:
        """Test DSR ignores a constant threshold."""
        assert EstimatorSpec(Estimator.DSR, threshold="const").mean_threshold

    def test_coerces_strings(self) -> None:
        """Test string identifiers become enum members."""
        spec = EstimatorSpec("LPM", threshold="mean", family="bisquare")
        assert spec.estimator is Estimator.LPM
        assert spec.threshold is Threshold.MEAN
        assert spec.family is RobustFamily.BISQUARE

    def test_unknown_family(self) -> None:
        """Test unknown family raises InputValidationError."""
        with pytest.raises(InputValidationError):
            EstimatorSpec(Estimator.ROB_MEAN, family="huber")

    def test_frozen(self) -> None:
        """Test the spec is immutable."""
        spec = EstimatorSpec(Estimator.VAR)
        with pytest.raises(AttributeError):
            spec.alpha = 0.01


class TestReturnSeries:
    """Tests for ReturnSeries dataclass."""

    def test_series_index_becomes_labels(self) -> None:
        """Test a datetime index is carried as labels."""
        index = pd.date_range("2024-01-01", periods=3, freq="D")
        rs = ReturnSeries.from_input(pd.Series([0.01, 0.02, -0.01], index=index))
        assert rs.labels.equals(index)

    def test_range_index_dropped(self) -> None:
        """Test a default RangeIndex carries no labels."""
        assert ReturnSeries.from_input(pd.Series([0.01, 0.02])).labels is None

    def test_explicit_labels_win(self) -> None:
        """Test explicit labels override the Series index."""
        index = pd.date_range("2024-01-01", periods=2, freq="D")
        rs = ReturnSeries.from_input(pd.Series([0.01, 0.02], index=index), labels=["a", "b"])
        assert list(rs.labels) == ["a", "b"]

    def test_single_column_frame(self) -> None:
        """Test a one-column DataFrame is accepted."""
        rs = ReturnSeries.from_input(pd.DataFrame({"fund": [0.01, 0.02, 0.03]}))
        np.testing.assert_allclose(rs.values, [0.01, 0.02, 0.03])

    def test_multi_column_frame(self) -> None:
        """Test a multi-column DataFrame is rejected."""
        with pytest.raises(InputValidationError):
            ReturnSeries.from_input(pd.DataFrame({"a": [0.01], "b": [0.02]}))

    def test_label_length_mismatch(self) -> None:
        """Test labels must match the values length."""
        with pytest.raises(InputValidationError):
            ReturnSeries.from_input([0.01, 0.02, 0.03], labels=["a", "b"])

    def test_non_finite(self) -> None:
        """Test NaN values are rejected."""
        with pytest.raises(InputValidationError):
            ReturnSeries(np.array([0.01, np.nan]))

    def test_non_numeric(self) -> None:
        """Test string input raises InputValidationError."""
        with pytest.raises(InputValidationError, match="returns must be numeric"):
            ReturnSeries.from_input(["a"])

    def test_non_numeric_series(self) -> None:
        """Test an object Series of strings raises InputValidationError."""
        with pytest.raises(InputValidationError):
            ReturnSeries.from_input(pd.Series(["0.01", "n/a"]))

    def test_two_dimensional(self) -> None:
        """Test 2-D input is rejected."""
        with pytest.raises(InputValidationError):
            ReturnSeries(np.ones((2, 2)))


class TestIFResult:
    """Tests for IFResult dataclass."""

    def test_series_mode_frame(self) -> None:
        """Test the frame carries x, IF and labels."""
        labels = pd.Index(["a", "b"])
        result = IFResult(
            estimator=Estimator.MEAN,
            mode="series",
            x=np.array([0.01, 0.03]),
            values=np.array([-0.01, 0.01]),
            labels=labels,
        )
        frame = result.to_frame()
        assert list(frame.columns) == ["x", "IF"]
        assert frame.index.equals(labels)
        assert len(result) == 2


class TestErrors:
    """Tests for the error hierarchy."""

    def test_context_in_message(self) -> None:
        """Test context fields are rendered into the message."""
        err = InfluenceFunctionError("missing nuisance parameter", estimator="SR", mode="shape")
        assert str(err) == "missing nuisance parameter (estimator=SR, mode=shape)"

    def test_none_context_dropped(self) -> None:
        """Test None context values are left out."""
        assert InfluenceFunctionError("boom", key=None).context == {}

    def test_builtin_bases(self) -> None:
        """Test errors also derive from the matching builtin exceptions."""
        assert issubclass(InputValidationError, ValueError)
        assert issubclass(DegenerateRatioError, ZeroDivisionError)
        assert issubclass(NonConvergenceError, RuntimeError)
