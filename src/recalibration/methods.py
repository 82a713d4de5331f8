# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-strict

import logging
import warnings
from typing import Any

import numpy as np
import pandas as pd
from numpy import typing as npt
from recalibration import utils
from recalibration.base import BaseBinaryClassifier
from recalibration.exceptions import ConvergenceError, DegenerateSplitError
from scipy.optimize._linesearch import LineSearchWarning
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from typing_extensions import Self

logger: logging.Logger = logging.getLogger(__name__)

INTERCEPT_NAME: str = "intercept"


class LogisticRegressionModel(BaseBinaryClassifier):
    """
    Unpenalised maximum likelihood logistic regression of a binary label on one or more numerical columns.

    The fit uses a Newton-type solver (Newton-CG) and falls back to L-BFGS once if the primary solver returns
    non-finite coefficients. A fit that stops at the iteration limit with a convergence warning, or that yields
    non-finite coefficients with both solvers, raises a `ConvergenceError` instead of returning degenerate
    coefficients.

    After fitting, the model scores rows on the link scale (`predict_linear`, intercept + coef . x) and on the
    response scale (`predict`, the logistic function of the link scale).
    """

    DEFAULT_SOLVER: str = "newton-cg"
    FALLBACK_SOLVER: str = "lbfgs"
    DEFAULT_MAX_ITER: int = 1000
    DEFAULT_TOL: float = 1e-6

    def __init__(
        self,
        solver: str | None = None,
        max_iter: int | None = None,
        tol: float | None = None,
        stage: str | None = None,
    ) -> None:
        """
        :param solver: scikit-learn solver used for the fit. Defaults to Newton-CG.
        :param max_iter: maximum number of solver iterations; reaching it with a convergence warning is fatal.
        :param tol: solver tolerance on the gradient.
        :param stage: name of the experiment stage this model belongs to, attached to the errors it raises.
        """
        self.solver: str = self.DEFAULT_SOLVER if solver is None else solver
        self.max_iter: int = self.DEFAULT_MAX_ITER if max_iter is None else max_iter
        self.tol: float = self.DEFAULT_TOL if tol is None else tol
        self.stage = stage

        self.feature_column_names: list[str] | None = None
        self.intercept_: float | None = None
        self.coef_: npt.NDArray | None = None
        self.n_iter_: int | None = None

    @property
    def is_fitted(self) -> bool:
        return self.coef_ is not None

    @property
    def coefficients(self) -> dict[str, float]:
        """Returns the fitted intercept and the slope of every feature, keyed by feature name."""
        if not self.is_fitted:
            raise ValueError("Model has not been fit yet.")
        return {
            INTERCEPT_NAME: self.intercept_,
            **{
                name: float(coef)
                for name, coef in zip(self.feature_column_names, self.coef_)
            },
        }

    def fit(
        self,
        df_train: pd.DataFrame,
        label_column_name: str,
        feature_column_names: list[str] | None = None,
        weight_column_name: str | None = None,
        **kwargs: Any,
    ) -> Self:
        if not feature_column_names:
            raise ValueError(
                "LogisticRegressionModel requires at least one feature column."
            )
        self._check_labels(df_train, label_column_name)
        self._check_features(df_train, feature_column_names)

        X = df_train[feature_column_names].to_numpy(dtype=np.float64)
        y = df_train[label_column_name].to_numpy(dtype=np.float64)
        w = (
            df_train[weight_column_name].to_numpy(dtype=np.float64)
            if weight_column_name
            else np.ones_like(y)
        )

        log_reg = self._fit_solver(self.solver, X, y, w)
        if not self._has_finite_coefficients(log_reg):
            if self.solver == self.FALLBACK_SOLVER:
                raise ConvergenceError(
                    f"Logistic regression with solver `{self.solver}` returned non-finite coefficients.",
                    stage=self.stage,
                )
            logger.warning(
                f"Solver `{self.solver}` returned non-finite coefficients, refitting with `{self.FALLBACK_SOLVER}`."
            )
            log_reg = self._fit_solver(self.FALLBACK_SOLVER, X, y, w)
            if not self._has_finite_coefficients(log_reg):
                raise ConvergenceError(
                    f"Logistic regression returned non-finite coefficients with both `{self.solver}` and "
                    f"`{self.FALLBACK_SOLVER}`.",
                    stage=self.stage,
                )

        self.feature_column_names = list(feature_column_names)
        self.intercept_ = float(log_reg.intercept_[0])
        self.coef_ = np.asarray(log_reg.coef_[0], dtype=np.float64)
        self.n_iter_ = int(np.max(log_reg.n_iter_))
        logger.info(
            f"Fit logistic regression on {len(y)} rows in {self.n_iter_} iterations: {self.coefficients}"
        )
        return self

    def _fit_solver(
        self,
        solver: str,
        X: npt.NDArray,
        y: npt.NDArray,
        w: npt.NDArray,
    ) -> LogisticRegression:
        with warnings.catch_warnings(record=True) as recorded_warnings:
            warnings.simplefilter("always")
            log_reg = LogisticRegression(
                penalty=None, solver=solver, max_iter=self.max_iter, tol=self.tol
            )
            log_reg.fit(X, y, sample_weight=w)

        hit_iteration_limit = int(np.max(log_reg.n_iter_)) >= self.max_iter
        for rec_warn in recorded_warnings:
            if isinstance(rec_warn.message, LineSearchWarning):
                logger.info(
                    f"Line search warning ({solver}): {str(rec_warn.message)}. Solution is approximately optimal - no ideal step size for the update can be found. These warnings are generally harmless."
                )
            elif issubclass(rec_warn.category, ConvergenceWarning):
                if hit_iteration_limit:
                    raise ConvergenceError(
                        f"Logistic regression with solver `{solver}` did not converge within {self.max_iter} "
                        f"iterations: {str(rec_warn.message)}",
                        stage=self.stage,
                    )
                logger.warning(
                    f"Solver `{solver}` reported: {str(rec_warn.message)}. The iteration limit was not reached; "
                    "the solution is approximately optimal."
                )
            elif issubclass(rec_warn.category, FutureWarning):
                # scikit-learn deprecations of the unpenalised `penalty=None` spelling
                logger.debug(f"Solver `{solver}` raised a FutureWarning: {str(rec_warn.message)}")
            else:
                logger.debug(rec_warn)
                warnings.warn_explicit(
                    message=str(rec_warn.message),
                    category=rec_warn.category,
                    filename=rec_warn.filename,
                    lineno=rec_warn.lineno,
                    source=rec_warn.source,
                )
        return log_reg

    @staticmethod
    def _has_finite_coefficients(log_reg: LogisticRegression) -> bool:
        return bool(
            np.isfinite(log_reg.coef_).all() and np.isfinite(log_reg.intercept_).all()
        )

    def _check_labels(self, df_train: pd.DataFrame, label_column_name: str) -> None:
        if df_train[label_column_name].isnull().any():
            raise ValueError(
                f"LogisticRegressionModel does not support missing values in the label column, but {df_train[label_column_name].isnull().sum()}"
                f" of {len(df_train[label_column_name])} are null."
            )
        unique_labels = list(df_train[label_column_name].unique())
        labels_are_valid_int = df_train[label_column_name].isin([0, 1]).all()
        labels_are_valid_bool = df_train[label_column_name].isin([True, False]).all()
        if not (labels_are_valid_bool or labels_are_valid_int):
            raise ValueError(
                f"Labels in column `{label_column_name}` must be binary, either 0/1 or True/False. Got {unique_labels=}"
            )
        if not len(unique_labels) == 2:
            raise DegenerateSplitError(
                f"Labels in column `{label_column_name}` must contain both events and non-events, but the "
                f"{len(df_train)} training rows contain only {unique_labels=}",
                stage=self.stage,
            )

    @staticmethod
    def _check_features(df_train: pd.DataFrame, feature_column_names: list[str]) -> None:
        missing = [c for c in feature_column_names if c not in df_train.columns]
        if missing:
            raise ValueError(f"Feature columns {missing} are not in the dataframe.")
        if df_train[feature_column_names].isnull().any().any():
            raise ValueError(
                "LogisticRegressionModel does not support missing values in the feature columns."
            )

    def predict_linear(
        self,
        df: pd.DataFrame,
        **kwargs: Any,
    ) -> npt.NDArray:
        if not self.is_fitted:
            raise ValueError("Model has not been fit yet.")
        X = df[self.feature_column_names].to_numpy(dtype=np.float64)
        return self.intercept_ + X @ self.coef_


class LinearPredictorCalibrator(BaseBinaryClassifier):
    """
    Recalibrates an already fitted base model to a new population with a univariate logistic regression of the
    label on the base model's linear predictor (its log-odds).

    This is Platt scaling on the link scale: the calibrator learns one affine map intercept + slope * base log-odds,
    which corrects shifts in the level and in the scale of risk between the population the base model was fit on
    and the target population, while keeping the base model's ranking as long as the slope is positive. The base
    model is only used for scoring and is never refit.

    References:
    - Platt, J. (1999). Probabilistic outputs for support vector machines and comparisons to regularized
        likelihood methods. Advances in large margin classifiers, 10(3), 61-74.
    - Cox, D. R. (1958). Two further applications of a model for binary regression. Biometrika, 45(3/4), 562-565.
    """

    DEFAULT_LINEAR_PREDICTOR_COLUMN_NAME: str = "industry_linear_risk"

    def __init__(
        self,
        base_model: BaseBinaryClassifier,
        linear_predictor_column_name: str = DEFAULT_LINEAR_PREDICTOR_COLUMN_NAME,
        solver: str | None = None,
        max_iter: int | None = None,
        tol: float | None = None,
        stage: str | None = None,
    ) -> None:
        self.base_model = base_model
        self.linear_predictor_column_name = linear_predictor_column_name
        self.log_reg = LogisticRegressionModel(
            solver=solver, max_iter=max_iter, tol=tol, stage=stage
        )

    def add_linear_predictor(self, df: pd.DataFrame) -> pd.DataFrame:
        """Returns a copy of `df` with the base model's log-odds appended as the linear predictor column."""
        return df.assign(
            **{self.linear_predictor_column_name: self.base_model.predict_linear(df)}
        )

    def fit(
        self,
        df_train: pd.DataFrame,
        label_column_name: str,
        feature_column_names: list[str] | None = None,
        weight_column_name: str | None = None,
        **kwargs: Any,
    ) -> Self:
        df_train = self.add_linear_predictor(df_train)
        self.log_reg.fit(
            df_train,
            label_column_name=label_column_name,
            feature_column_names=[self.linear_predictor_column_name],
            weight_column_name=weight_column_name,
        )

        correlation = np.corrcoef(
            df_train[self.linear_predictor_column_name].to_numpy(dtype=np.float64),
            df_train[label_column_name].to_numpy(dtype=np.float64),
        )[0, 1]
        if np.sign(self.slope_) != np.sign(correlation):
            logger.warning(
                f"Calibration slope {self.slope_:.4g} has a different sign than the correlation ({correlation:.4g}) "
                "between the linear predictor and the label."
            )
        if self.slope_ <= 0:
            logger.warning(
                f"Calibration slope is not positive ({self.slope_:.4g}); the calibrated model does not preserve the "
                "ranking of the base model."
            )
        return self

    @property
    def intercept_(self) -> float:
        return self.log_reg.coefficients[INTERCEPT_NAME]

    @property
    def slope_(self) -> float:
        return self.log_reg.coefficients[self.linear_predictor_column_name]

    @property
    def coefficients(self) -> dict[str, float]:
        return self.log_reg.coefficients

    def predict_linear(
        self,
        df: pd.DataFrame,
        **kwargs: Any,
    ) -> npt.NDArray:
        return self.log_reg.predict_linear(self.add_linear_predictor(df))


class ConstantRateModel(BaseBinaryClassifier):
    """
    Baseline that predicts the same probability for every row.

    With `rate=None` the rate is learnt as the (weighted) mean label of the training data, i.e. the null model.
    With a fixed rate fitting is a no-op, e.g. `ConstantRateModel(rate=0.0)` is the naive model that never
    predicts a default.
    """

    def __init__(self, rate: float | None = None) -> None:
        if rate is not None and not 0 <= rate <= 1:
            raise ValueError(f"rate must be a probability in [0, 1], got {rate}.")
        self.fixed_rate = rate
        self.rate: float | None = rate

    def fit(
        self,
        df_train: pd.DataFrame,
        label_column_name: str,
        feature_column_names: list[str] | None = None,
        weight_column_name: str | None = None,
        **kwargs: Any,
    ) -> Self:
        if self.fixed_rate is not None:
            return self
        w = (
            df_train[weight_column_name].to_numpy(dtype=np.float64)
            if weight_column_name
            else np.ones(df_train.shape[0])
        )
        self.rate = float(
            np.average(df_train[label_column_name].to_numpy(dtype=np.float64), weights=w)
        )
        return self

    def predict_linear(
        self,
        df: pd.DataFrame,
        **kwargs: Any,
    ) -> npt.NDArray:
        return utils.logit(self.predict(df))

    def predict(
        self,
        df: pd.DataFrame,
        **kwargs: Any,
    ) -> npt.NDArray:
        if self.rate is None:
            raise ValueError("Model has not been fit yet.")
        return np.full(len(df), self.rate, dtype=np.float64)
