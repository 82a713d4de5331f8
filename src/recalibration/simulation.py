# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-strict

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from recalibration import utils
from recalibration.config import ExperimentConfig, SimulationConfig

logger: logging.Logger = logging.getLogger(__name__)

COVARIATE_COLUMN_NAME: str = "credit_score"
LABEL_COLUMN_NAME: str = "default"

QUARTILE_NAMES: tuple[str, ...] = ("min", "q1", "median", "q3", "max")


@dataclass(frozen=True)
class SimulatedDataSet:
    config: SimulationConfig
    df: pd.DataFrame

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def size(self) -> int:
        return len(self.df)

    @property
    def default_rate(self) -> float:
        return float(self.df[LABEL_COLUMN_NAME].mean())

    def covariate_quartiles(self) -> dict[str, float]:
        """Returns min, quartiles, max and mean of the credit score."""
        quantiles = np.quantile(
            self.df[COVARIATE_COLUMN_NAME].to_numpy(), [0, 0.25, 0.5, 0.75, 1]
        )
        summary = {name: float(q) for name, q in zip(QUARTILE_NAMES, quantiles)}
        summary["mean"] = float(self.df[COVARIATE_COLUMN_NAME].mean())
        return summary


def simulate_credit_data(
    config: SimulationConfig, rng: np.random.Generator
) -> SimulatedDataSet:
    """
    Simulates a credit data set with one covariate (credit score) and a binary default label.

    Three vectors are drawn from `rng`, always in this order: the log-normal credit scores, the standard
    normal noise on the linear risk, and the Bernoulli default outcomes. Changing the order changes the data
    even for the same seed.

    :param config: the data generating process
    :param rng: random generator, advanced by 3 * config.n draws
    :return: the simulated data set with columns `credit_score` and `default`
    """
    config.validate()
    credit_score = rng.lognormal(mean=config.meanlog, sigma=config.sdlog, size=config.n)
    noise = rng.normal(loc=0.0, scale=1.0, size=config.n)
    linear_risk = config.intercept + config.slope * credit_score + noise
    default = rng.binomial(n=1, p=utils.logistic_vectorized(linear_risk))

    data_set = SimulatedDataSet(
        config=config,
        df=pd.DataFrame(
            {
                COVARIATE_COLUMN_NAME: credit_score,
                LABEL_COLUMN_NAME: default.astype(np.int64),
            }
        ),
    )
    logger.info(
        f"Simulated {data_set.size} `{config.name}` observations with default rate {data_set.default_rate:.4%}"
    )
    return data_set


def simulate_industry_and_company(
    config: ExperimentConfig, rng: np.random.Generator
) -> tuple[SimulatedDataSet, SimulatedDataSet]:
    """Simulates the industry data set first and then the company data set from the same generator."""
    industry = simulate_credit_data(config.industry, rng)
    company = simulate_credit_data(config.company, rng)
    return industry, company
