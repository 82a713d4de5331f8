# ---
# jupyter:
#   jupytext:
#     text_representation:
#       extension: .py
#       format_name: percent
#       format_version: '1.3'
#       jupytext_version: 1.16.0
#   kernelspec:
#     display_name: Python 3
#     language: python
#     name: python3
# ---

# %% [markdown]
# # Recalibrating an Industry Credit Model to a Single Company
#
# A lender often has too little default history to fit its own credit model, but can buy a model that
# was fit on pooled industry data. The industry model ranks borrowers well, yet its probabilities are
# off for a company whose borrowers differ from the industry average.
#
# This tutorial simulates that situation and fixes it by recalibration: a univariate logistic regression
# of the company's defaults on the industry model's log-odds, fit on a small stratified slice of the
# company data.
#
# ## What You'll Learn
#
# 1. **Simulation** - How the industry and company data sets are generated
# 2. **Recalibration** - Fitting the calibration model on top of a frozen base model
# 3. **Evaluation** - AUC, decile tables and log loss against simple baselines

# %%
import logging

from recalibration import pipeline, plotting
from recalibration.config import DEFAULT_CONFIG

logging.basicConfig(level=logging.INFO)

# %% [markdown]
# ## Part 1: The Experiment Configuration
#
# Both populations draw a credit score from a log-normal distribution and default with probability
# `logistic(intercept + slope * credit_score + noise)`. The company scores higher on average and its risk
# falls off more slowly with the score. All draws come from one generator seeded with `seed`.

# %%
DEFAULT_CONFIG.to_dict()

# %% [markdown]
# ## Part 2: Running the Experiment
#
# The experiment runs its stages in order: simulate both data sets, fit the base model on industry,
# split the company data (10% train, stratified on default), fit the calibration model and the null
# baseline on company-train, and evaluate on company-test.

# %%
experiment = pipeline.RecalibrationExperiment(config=DEFAULT_CONFIG)
report = experiment.run()
print(report.summary())

# %% [markdown]
# The two populations have very different default rates and credit score distributions:

# %%
plotting.plot_covariate_distributions(
    {
        "industry": experiment.industry.df,
        "company": experiment.company.df,
    }
).show()

# %% [markdown]
# ## Part 3: Ranking vs Calibration
#
# The calibration model is an increasing affine map of the base model's log-odds, so it ranks the
# company-test borrowers exactly like the industry model does and both have the same AUC.

# %%
print(f"AUC calibrated: {report.calibrated.auc:.4f}")
print(f"AUC industry:   {report.industry.auc:.4f}")
print(f"Calibration coefficients: {report.calibrated_model_coefficients}")

# %% [markdown]
# The probabilities, however, are very different. In the decile plot each point is a decile of the
# predictions; points on the diagonal are well calibrated. Crosses mark deciles whose mean prediction lies
# outside the 95% confidence interval of the actual default rate.

# %%
plotting.plot_decile_calibration(
    report.decile_tables, title="Company-test calibration", log_axes=True
).show()

# %% [markdown]
# ## Part 4: Log Loss Against Baselines
#
# The null model predicts the company-train default rate for everyone; the naive model predicts that no
# one defaults. Predictions are clamped away from 0 and 1, so the naive model's log loss is finite but large.

# %%
report.log_losses

# %% [markdown]
# ## Part 5: Sensitivity to the Calibration Sample
#
# With a default rate below 1%, the 10% training slice contains only a handful of defaults. Rerunning the
# experiment with other seeds shows how much the calibration coefficients move.

# %%
for seed in range(1, 6):
    seed_report = pipeline.run_experiment(DEFAULT_CONFIG.replace(seed=seed))
    print(
        f"seed={seed}: coefficients={seed_report.calibrated_model_coefficients}, "
        f"log loss calibrated={seed_report.log_losses['calibrated']:.4f}"
    )
