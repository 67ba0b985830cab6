import logging
from typing import Any, Dict, Sequence

import numpy as np
import pandas as pd
import pingouin as pg
import statsmodels.formula.api as smf

from longitudinal.assumptions.tests import (
    AssumptionResult,
    HomogeneityOfVarianceTest,
    SphericityTest,
    apply_sphericity_correction,
    run_residual_checks,
)
from longitudinal.config import GROUP_COL, OUTCOME_COL, SUBJECT_COL, TIME_COL

logger = logging.getLogger(__name__)

INTERACTION_SOURCE = "Interaction"


def mixed_anova(data: pd.DataFrame, dv: str = OUTCOME_COL, within: str = TIME_COL,
                between: str = GROUP_COL, subject: str = SUBJECT_COL, alpha: float = 0.05,
                w_threshold: float = 0.75,
                normality_methods: Sequence[str] = ("shapiro", "ks"),
                figures: bool = True) -> Dict[str, Any]:
    """
    Mixed between/within-subjects ANOVA with sphericity correction and assumption checks.

    Parameters:
    -----------
    data : pd.DataFrame
        Long-format panel, one row per subject and within-subject level
    dv : str
        Outcome column
    within : str
        Within-subjects (repeated) factor
    between : str
        Between-subjects factor
    subject : str
        Subject identifier column
    alpha : float
        Significance level
    w_threshold : float
        Mauchly's W above which the Huynh-Feldt correction is used instead of
        Greenhouse-Geisser
    normality_methods : sequence of str
        Normality tests to run on the residuals
    figures : bool
        Render SVG figures for the assumption checks

    Returns:
    --------
    Dict[str, Any]
        'anova_table' (one row per source), 'sphericity', 'assumptions',
        'residuals', 'predicted' and 'significant_effects'
    """
    data_clean = data.dropna(subset=[dv, within, between, subject])
    n_subjects = data_clean[subject].nunique()
    if n_subjects < 3:
        raise ValueError(f"Insufficient number of subjects (n = {n_subjects}). Need at least 3.")

    # Sphericity first: it decides the correction applied to the within-subject rows
    sphericity = SphericityTest().run_test(
        data_clean, subject, within, dv, alpha=alpha, threshold=w_threshold
    )
    epsilon = sphericity['epsilon']

    aov = pg.mixed_anova(
        data=data_clean,
        dv=dv,
        within=within,
        between=between,
        subject=subject,
        correction=False
    )
    # pingouin < 0.6 spells the p-value column "p-unc"
    aov = aov.rename(columns={"p-unc": "p_unc"})

    rows = []
    for _, row in aov.iterrows():
        source = row['Source']
        f_value = float(row['F'])
        df1 = float(row['DF1'])
        df2 = float(row['DF2'])
        p_unc = float(row['p_unc'])

        if source == between:
            corrected = {'epsilon': 1.0, 'df1': df1, 'df2': df2, 'p_value': p_unc}
        else:
            corrected = apply_sphericity_correction(f_value, df1, df2, epsilon)

        rows.append({
            'source': source,
            'SS': float(row['SS']),
            'df1': df1,
            'df2': df2,
            'MS': float(row['MS']),
            'F': f_value,
            'p_unc': p_unc,
            'epsilon': corrected['epsilon'],
            'df1_corr': corrected['df1'],
            'df2_corr': corrected['df2'],
            'p_corr': corrected['p_value'],
            'np2': float(row['np2']) if 'np2' in row and not pd.isna(row['np2']) else np.nan,
            'significant': corrected['p_value'] < alpha,
        })

    anova_table = pd.DataFrame(rows)
    significant_effects = [
        source for source in (between, within)
        if bool(anova_table.loc[anova_table['source'] == source, 'significant'].any())
    ]
    logger.info(f"Mixed ANOVA significant main effects: {significant_effects or 'none'}")

    # Residuals from the equivalent linear model with subject as a blocking factor
    ols_formula = f"{dv} ~ C({subject}) + C({within}) * C({between})"
    ols_results = smf.ols(ols_formula, data=data_clean).fit()
    residuals = ols_results.resid
    predicted = ols_results.fittedvalues

    assumptions = {}
    for method, result in run_residual_checks(residuals, methods=normality_methods,
                                              alpha=alpha, figures=figures).items():
        assumptions[f"normality_{method}"] = result

    homogeneity = HomogeneityOfVarianceTest()
    for level in sorted(data_clean[within].unique()):
        level_data = data_clean[data_clean[within] == level]
        assumptions[f"homogeneity_{within}_{level}"] = homogeneity.run_test(
            level_data[dv], level_data[between], method='levene', alpha=alpha, figures=figures
        )

    assumptions[f"sphericity_{within}"] = sphericity

    violated = [name for name, result in assumptions.items()
                if result['result'] is AssumptionResult.FAILED]
    if violated:
        logger.warning(f"Mixed ANOVA assumption checks failed: {', '.join(violated)}")

    return {
        'test': 'Mixed ANOVA',
        'dv': dv,
        'within': within,
        'between': between,
        'subject': subject,
        'alpha': alpha,
        'anova_table': anova_table,
        'sphericity': sphericity,
        'correction': sphericity['correction'],
        'assumptions': assumptions,
        'residuals': residuals,
        'predicted': predicted,
        'significant_effects': significant_effects,
        'ols_formula': ols_formula,
    }
