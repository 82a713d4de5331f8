# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-strict

from abc import ABC, abstractmethod
from typing import Any

import pandas as pd

from numpy import typing as npt
from recalibration import utils
from typing_extensions import Self


class BaseBinaryClassifier(ABC):
    @abstractmethod
    def fit(
        self,
        df_train: pd.DataFrame,
        label_column_name: str,
        feature_column_names: list[str] | None = None,
        weight_column_name: str | None = None,
        **kwargs: Any,
    ) -> Self:
        """Fit the classifier on the provided training data.

        :param df_train: The dataframe containing the training data
        :param label_column_name: Name of the column in dataframe df_train that contains the binary ground truth labels
        :param feature_column_names: List of column names in the df that contain the predictors. Classifiers that derive
                                     their own predictors (e.g. a calibrator of another model's linear predictor) ignore it
        :param weight_column_name: Name of the column in dataframe df_train that contains the instance weights
        :param kwargs: Additional keyword arguments
        :return: The fitted classifier instance
        """
        pass

    @abstractmethod
    def predict_linear(
        self,
        df: pd.DataFrame,
        **kwargs: Any,
    ) -> npt.NDArray:
        """Score a DataFrame on the link scale (log-odds).

        This requires the `fit` method to have been previously called on this classifier object.

        :param df: The dataframe containing the data to score
        :param kwargs: Additional keyword arguments
        :return: Array of log-odds
        """
        pass

    def predict(
        self,
        df: pd.DataFrame,
        **kwargs: Any,
    ) -> npt.NDArray:
        """Score a DataFrame on the response scale (probabilities)."""
        return utils.logistic_vectorized(self.predict_linear(df, **kwargs))

    def fit_transform(
        self,
        df: pd.DataFrame,
        label_column_name: str,
        feature_column_names: list[str] | None = None,
        weight_column_name: str | None = None,
        is_train_set_col_name: str | None = None,
        **kwargs: Any,
    ) -> npt.NDArray:
        """
        Fits the model using the training data and then returns probabilities for all data.

        :param df: the dataframe containing the data to score
        :param label_column_name: name of the column in dataframe df that contains the ground truth labels
        :param feature_column_names: list of column names in the df that contain the predictors.
        :param weight_column_name: name of the column in dataframe df that contains the instance weights
        :param is_train_set_col_name: name of the column in the dataframe that contains a boolean indicating
            whether the row is part of the training set (True) or test set (False). If no is_train_set_col_name is
            provided, then all rows are considered part of the training set.
        """
        df_train = (
            df if is_train_set_col_name is None else df[df[is_train_set_col_name]]
        )
        self.fit(
            df_train=df_train,
            label_column_name=label_column_name,
            feature_column_names=feature_column_names,
            weight_column_name=weight_column_name,
            **kwargs,
        )
        return self.predict(df=df, **kwargs)
