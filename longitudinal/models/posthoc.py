import logging
from typing import Dict, Mapping

import numpy as np
import pandas as pd
import pingouin as pg
from scipy import stats

from longitudinal.config import OUTCOME_COL, SUBJECT_COL, VALID_ADJUSTMENTS

logger = logging.getLogger(__name__)


def _normalize_columns(table: pd.DataFrame) -> pd.DataFrame:
    # pingouin renamed "p-unc"/"p-corr" to "p_unc"/"p_corr" in 0.6
    return table.rename(columns=lambda c: c.lower().replace('-', '_'))


def pairwise_comparisons(data: pd.DataFrame, factor: str, kind: str, dv: str = OUTCOME_COL,
                         subject: str = SUBJECT_COL, padjust: str = 'none',
                         alpha: float = 0.05) -> pd.DataFrame:
    """
    All pairwise differences between the levels of one factor.

    Parameters:
    -----------
    data : pd.DataFrame
        Long-format panel
    factor : str
        Factor whose levels are compared
    kind : str
        'between' (independent groups, compared on subject means) or
        'within' (repeated levels, compared on paired differences)
    dv : str
        Outcome column
    subject : str
        Subject identifier column
    padjust : str
        'none', 'bonf', 'holm' or 'fdr_bh'
    alpha : float
        Family-wise significance level

    Returns:
    --------
    pd.DataFrame
        One row per pair: estimate (level1 - level2), se, df, t, confidence
        interval, unadjusted and adjusted p-values, Hedges' g and significance.
        Bonferroni-adjusted comparisons get Bonferroni-widened intervals.
    """
    if kind not in ('between', 'within'):
        raise ValueError(f"kind must be 'between' or 'within', got {kind}")
    if padjust not in VALID_ADJUSTMENTS:
        raise ValueError(f"Unknown p-value adjustment: {padjust}")

    n_levels = data[factor].nunique()
    if n_levels < 2:
        raise ValueError(f"Factor '{factor}' needs at least two levels for pairwise comparisons")

    if kind == 'between':
        # Average the repeated measurements so every subject counts once
        frame = data.groupby([subject, factor], as_index=False)[dv].mean()
        posthoc = pg.pairwise_tests(data=frame, dv=dv, between=factor, padjust=padjust,
                                    correction=False, effsize='hedges')
    else:
        counts = pd.crosstab(data[subject], data[factor])
        if not (counts == 1).all().all():
            raise ValueError(f"Within-subject comparisons for '{factor}' require a balanced design")
        frame = data
        posthoc = pg.pairwise_tests(data=frame, dv=dv, within=factor, subject=subject,
                                    padjust=padjust, effsize='hedges')
    posthoc = _normalize_columns(posthoc)

    level_means = frame.groupby(factor)[dv].mean()
    estimate = (level_means.loc[posthoc['a']].to_numpy()
                - level_means.loc[posthoc['b']].to_numpy())
    t_values = posthoc['t'].astype(float).to_numpy()

    table = pd.DataFrame({
        'factor': factor,
        'group1': posthoc['a'].to_numpy(),
        'group2': posthoc['b'].to_numpy(),
        'estimate': estimate,
        'se': np.abs(estimate / t_values),
        'df': posthoc['dof'].astype(float).to_numpy(),
        't': t_values,
        'p_unc': posthoc['p_unc'].astype(float).to_numpy(),
        'hedges': posthoc['hedges'].astype(float).to_numpy(),
    })
    # pingouin omits the corrected column when nothing is adjusted
    if padjust != 'none' and 'p_corr' in posthoc:
        table['p_adj'] = posthoc['p_corr'].astype(float).to_numpy()
    else:
        table['p_adj'] = table['p_unc']
    table['padjust'] = padjust

    ci_alpha = alpha / len(table) if padjust == 'bonf' else alpha
    t_crit = stats.t.ppf(1 - ci_alpha / 2, table['df'])
    table['ci_lower'] = table['estimate'] - t_crit * table['se']
    table['ci_upper'] = table['estimate'] + t_crit * table['se']
    table['significant'] = table['p_adj'] < alpha

    columns = ['factor', 'group1', 'group2', 'estimate', 'se', 'df', 't', 'ci_lower',
               'ci_upper', 'p_unc', 'p_adj', 'padjust', 'hedges', 'significant']
    return table[columns]


def run_posthoc(anova_results: Dict, data: pd.DataFrame,
                adjustments: Mapping[str, str]) -> Dict[str, pd.DataFrame]:
    """
    Pairwise comparisons for every main effect the mixed ANOVA found significant.

    Args:
        anova_results (dict): Output of mixed_anova
        data (pd.DataFrame): The panel the ANOVA was fit on
        adjustments (Mapping[str, str]): p-value adjustment per factor; factors
            not listed are left unadjusted

    Returns:
        dict: factor -> comparison table
    """
    kinds = {anova_results['between']: 'between', anova_results['within']: 'within'}
    posthoc = {}
    for factor in anova_results['significant_effects']:
        padjust = adjustments.get(factor, 'none')
        posthoc[factor] = pairwise_comparisons(
            data,
            factor,
            kinds[factor],
            dv=anova_results['dv'],
            subject=anova_results['subject'],
            padjust=padjust,
            alpha=anova_results['alpha'],
        )
        n_sig = int(posthoc[factor]['significant'].sum())
        logger.info(f"Post-hoc for '{factor}' ({padjust}): {n_sig}/{len(posthoc[factor])} pairs significant")
    return posthoc
