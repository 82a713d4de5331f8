# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
# pyre-strict

import math
from dataclasses import dataclass, field
from numbers import Integral, Real
from typing import Any

from recalibration.exceptions import ConfigurationError

DEFAULT_SEED: int = 1
DEFAULT_TRAIN_RATIO: float = 0.1

# Parameters of a single data generating process, as they appear (prefixed) in the flat configuration.
SIMULATION_PARAMETERS: tuple[str, ...] = ("n", "meanlog", "sdlog", "intercept", "slope")


@dataclass(frozen=True)
class SimulationConfig:
    """
    Parameters of one synthetic credit data generating process.

    The credit score is drawn from LogNormal(meanlog, sdlog) and the linear risk of default is
    intercept + slope * credit_score + N(0, 1).
    """

    name: str
    n: int
    meanlog: float
    sdlog: float
    intercept: float
    slope: float

    def validate(self) -> None:
        if isinstance(self.n, bool) or not isinstance(self.n, Integral):
            raise ConfigurationError(
                f"Sample size of `{self.name}` must be an integer, got {self.n!r}."
            )
        if self.n <= 0:
            raise ConfigurationError(
                f"Sample size of `{self.name}` must be positive, got {self.n}."
            )
        for parameter in ("meanlog", "sdlog", "intercept", "slope"):
            value = getattr(self, parameter)
            if (
                isinstance(value, bool)
                or not isinstance(value, Real)
                or not math.isfinite(value)
            ):
                raise ConfigurationError(
                    f"`{self.name}_{parameter}` must be a finite number, got {value!r}."
                )
        if self.sdlog <= 0:
            raise ConfigurationError(
                f"`{self.name}_sdlog` must be positive, got {self.sdlog}."
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            f"{self.name}_{parameter}": getattr(self, parameter)
            for parameter in SIMULATION_PARAMETERS
        }

    @classmethod
    def from_dict(cls, name: str, params: dict[str, Any]) -> "SimulationConfig":
        return cls(
            name=name,
            **{
                parameter: params[f"{name}_{parameter}"]
                for parameter in SIMULATION_PARAMETERS
            },
        )


INDUSTRY: SimulationConfig = SimulationConfig(
    name="industry",
    n=1_000_000,
    meanlog=3.0,
    sdlog=1.0,
    intercept=12.0,
    slope=-2.0,
)

COMPANY: SimulationConfig = SimulationConfig(
    name="company",
    n=10_000,
    meanlog=3.5,
    sdlog=1.0,
    intercept=1.5,
    slope=-0.9,
)


@dataclass(frozen=True)
class ExperimentConfig:
    """
    Full configuration of a recalibration experiment.

    :param seed: seed of the single random generator from which all draws (industry simulation, company
        simulation, stratified split) are taken, in that order.
    :param industry: data generating process of the large industry data set the base model is fit on.
    :param company: data generating process of the small company data set the base model is recalibrated on.
    :param train_ratio: share of the company data set used to fit the calibration model; the rest is held out.
    """

    seed: int = DEFAULT_SEED
    industry: SimulationConfig = field(default_factory=lambda: INDUSTRY)
    company: SimulationConfig = field(default_factory=lambda: COMPANY)
    train_ratio: float = DEFAULT_TRAIN_RATIO

    def validate(self) -> None:
        if (
            isinstance(self.seed, bool)
            or not isinstance(self.seed, Integral)
            or self.seed < 0
        ):
            raise ConfigurationError(
                f"`seed` must be a non-negative integer, got {self.seed!r}."
            )
        self.industry.validate()
        self.company.validate()
        if (
            isinstance(self.train_ratio, bool)
            or not isinstance(self.train_ratio, Real)
            or not 0 < self.train_ratio < 1
        ):
            raise ConfigurationError(
                f"`train_ratio` must be a number in the open interval (0, 1), got {self.train_ratio!r}."
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "seed": self.seed,
            **self.industry.to_dict(),
            **self.company.to_dict(),
            "train_ratio": self.train_ratio,
        }

    @classmethod
    def from_dict(cls, params: dict[str, Any]) -> "ExperimentConfig":
        """
        Builds a configuration from flat keys (e.g. `industry_n`, `company_slope`, `train_ratio`).
        Keys that are not given fall back to the default experiment.

        :param params: flat dictionary of configuration overrides
        :return: the (unvalidated) experiment configuration
        """
        valid_keys = set(DEFAULT_CONFIG.to_dict())
        unknown_keys = sorted(set(params) - valid_keys)
        if unknown_keys:
            raise ConfigurationError(
                f"Unknown configuration keys: {unknown_keys}. Valid keys are {sorted(valid_keys)}."
            )
        merged = {**DEFAULT_CONFIG.to_dict(), **params}
        return cls(
            seed=merged["seed"],
            industry=SimulationConfig.from_dict("industry", merged),
            company=SimulationConfig.from_dict("company", merged),
            train_ratio=merged["train_ratio"],
        )

    def replace(self, **params: Any) -> "ExperimentConfig":
        """Returns a copy of this configuration with the given flat keys overridden."""
        return ExperimentConfig.from_dict({**self.to_dict(), **params})


DEFAULT_CONFIG: ExperimentConfig = ExperimentConfig()
