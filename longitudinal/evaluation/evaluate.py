import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from longitudinal.models.linear_mixed_effects_model import FittedModel, count_parameters

logger = logging.getLogger(__name__)


@dataclass
class ModelComparison:
    """AIC/BIC/likelihood-ratio summary of a nested model sequence."""
    table: pd.DataFrame
    best_aic_model: str
    best_bic_model: str
    alpha: float = 0.05

    @property
    def criteria_agree(self) -> bool:
        return self.best_aic_model == self.best_bic_model


def information_criteria(llf: float, n_params: int, nobs: int) -> Dict[str, float]:
    """AIC and BIC from a log-likelihood."""
    return {
        'aic': -2.0 * llf + 2.0 * n_params,
        'bic': -2.0 * llf + np.log(nobs) * n_params,
    }


def likelihood_ratio_test(restricted: FittedModel, full: FittedModel) -> Dict[str, float]:
    """
    Likelihood-ratio test of a restricted model against a model that nests it.

    Parameters:
    -----------
    restricted : FittedModel
        The smaller model
    full : FittedModel
        The larger model; its fixed effects must include all of the restricted model's

    Returns:
    --------
    dict
        'statistic' (chi-square), 'df' and 'p_value'
    """
    for fitted in (restricted, full):
        if fitted.result.reml:
            raise ValueError(f"Model '{fitted.name}' was fit by REML; refit with ML to compare likelihoods")

    if restricted.nobs != full.nobs:
        raise ValueError(
            f"Models were fit on different data ({restricted.nobs} vs {full.nobs} observations)"
        )

    missing = set(restricted.fixed_effects) - set(full.fixed_effects)
    if missing:
        raise ValueError(
            f"Model '{full.name}' does not nest '{restricted.name}' (missing {sorted(missing)})"
        )

    df = full.n_params - restricted.n_params
    if df <= 0:
        raise ValueError(f"Model '{full.name}' has no parameters beyond '{restricted.name}'")

    # Optimizer noise can leave the larger model a hair below the smaller one
    statistic = max(2.0 * (full.llf - restricted.llf), 0.0)
    p_value = float(stats.chi2.sf(statistic, df))

    return {
        'statistic': statistic,
        'df': int(df),
        'p_value': p_value,
    }


def compare_models(models: Sequence[FittedModel], alpha: float = 0.05) -> ModelComparison:
    """
    Compare an ordered list of nested models.

    Every model gets its log-likelihood, parameter count, AIC and BIC. Each
    model after the first is tested against its predecessor with a
    likelihood-ratio test. Lower AIC/BIC is better; a non-significant LR test
    means the added terms are not worth keeping.
    """
    if len(models) < 2:
        raise ValueError("At least two models are needed for a comparison")

    rows = []
    for i, fitted in enumerate(models):
        n_params = count_parameters(fitted.result)
        criteria = information_criteria(fitted.llf, n_params, fitted.nobs)
        row = {
            'model': fitted.name,
            'formula': fitted.formula,
            'n_params': n_params,
            'log_likelihood': fitted.llf,
            'aic': criteria['aic'],
            'bic': criteria['bic'],
            'lr_chi2': np.nan,
            'lr_df': np.nan,
            'lr_p_value': np.nan,
            'keep_added_term': None,
        }
        if i > 0:
            lrt = likelihood_ratio_test(models[i - 1], fitted)
            row.update({
                'lr_chi2': lrt['statistic'],
                'lr_df': lrt['df'],
                'lr_p_value': lrt['p_value'],
                'keep_added_term': lrt['p_value'] < alpha,
            })
        rows.append(row)

    table = pd.DataFrame(rows)
    best_aic = table.loc[table['aic'].idxmin(), 'model']
    best_bic = table.loc[table['bic'].idxmin(), 'model']

    logger.info(f"Best model by AIC: {best_aic}; by BIC: {best_bic}")
    if best_aic != best_bic:
        logger.warning("AIC and BIC disagree; BIC tends to prefer the simpler model")

    return ModelComparison(table=table, best_aic_model=best_aic, best_bic_model=best_bic, alpha=alpha)


def describe_comparison(comparison: ModelComparison) -> List[str]:
    """Plain-language guidance for reading a model comparison."""
    lines = []
    table = comparison.table
    for i in range(1, len(table)):
        row = table.iloc[i]
        previous = table.iloc[i - 1]['model']
        if row['keep_added_term']:
            lines.append(
                f"{row['model']} improves on {previous} "
                f"(chi2({int(row['lr_df'])}) = {row['lr_chi2']:.2f}, p = {row['lr_p_value']:.4f}): keep the added term."
            )
        else:
            lines.append(
                f"{row['model']} does not improve on {previous} "
                f"(chi2({int(row['lr_df'])}) = {row['lr_chi2']:.2f}, p = {row['lr_p_value']:.4f}): drop the added term."
            )

    if comparison.criteria_agree:
        lines.append(f"Both AIC and BIC agree on the best model: {comparison.best_aic_model}")
    else:
        lines.append(
            f"Best model by AIC: {comparison.best_aic_model}; by BIC: {comparison.best_bic_model}. "
            "Consider the trade-off between fit and complexity."
        )
    return lines
