import re
from typing import Dict, List

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error

from longitudinal.config import GROUP_COL, TIME_COL
from longitudinal.models.linear_mixed_effects_model import FittedModel

# Treatment-coded patsy term, e.g. "drug[T.B]"
TREATMENT_TERM = re.compile(r"^(?P<factor>\w+)\[T\.(?P<level>.+)\]$")


def coefficient_table(fitted: FittedModel, alpha: float = 0.05) -> pd.DataFrame:
    """
    Fixed-effect estimates of a fitted mixed model.

    Returns one row per fixed effect with the estimate, standard error, Wald z,
    p-value, (1 - alpha) confidence interval and a significance flag.
    """
    result = fitted.result
    names = list(result.fe_params.index)
    conf_int = result.conf_int(alpha=alpha).loc[names]

    table = pd.DataFrame({
        'term': names,
        'estimate': result.fe_params.to_numpy(),
        'std_error': result.bse_fe.to_numpy(),
        'z_value': result.tvalues.loc[names].to_numpy(),
        'p_value': result.pvalues.loc[names].to_numpy(),
        'ci_lower': conf_int.iloc[:, 0].to_numpy(),
        'ci_upper': conf_int.iloc[:, 1].to_numpy(),
    })
    table['significant'] = table['p_value'] < alpha
    return table


def variance_components(fitted: FittedModel) -> Dict[str, float]:
    """Random intercept variance, residual variance and the intraclass correlation."""
    result = fitted.result
    subject_var = float(np.asarray(result.cov_re)[0, 0])
    residual_var = float(result.scale)
    total = subject_var + residual_var
    return {
        'subject_variance': subject_var,
        'residual_variance': residual_var,
        'icc': subject_var / total if total > 0 else np.nan,
    }


def fit_metrics(fitted: FittedModel) -> Dict[str, float]:
    """Prediction error of the fitted values (fixed + random effects)."""
    y_true = fitted.result.model.endog
    y_pred = fitted.fitted_values
    mse = mean_squared_error(y_true, y_pred)
    return {
        'rmse': float(np.sqrt(mse)),
        'mae': float(mean_absolute_error(y_true, y_pred)),
    }


def _format_p(p_value):
    return "p < 0.001" if p_value < 0.001 else f"p = {p_value:.3f}"


def interpret_coefficients(fitted: FittedModel, alpha: float = 0.05,
                           time: str = TIME_COL, group: str = GROUP_COL) -> List[str]:
    """
    Plain-language reading of each fixed effect.

    Treatment-coded group terms are read against the reference level, the
    time slope per unit of time, and interactions as a change of slope.
    """
    table = coefficient_table(fitted, alpha)
    frame = fitted.result.model.data.frame
    reference = sorted(frame[group].unique())[0] if group in frame else None
    lines = []

    for _, row in table.iterrows():
        term = row['term']
        significance = "significant" if row['significant'] else "not significant"
        p_text = _format_p(row['p_value'])
        ci_text = f"{(1 - alpha) * 100:.0f}% CI [{row['ci_lower']:.2f}, {row['ci_upper']:.2f}]"

        match = TREATMENT_TERM.match(term)
        if term == "Intercept":
            lines.append(
                f"Expected score at {time} 0 for the reference {group} group: {row['estimate']:.2f} ({ci_text})."
            )
        elif term == time:
            direction = "increase" if row['estimate'] > 0 else "decrease"
            lines.append(
                f"Scores {direction} by {abs(row['estimate']):.2f} points per {time} "
                f"({ci_text}, {p_text}, {significance})."
            )
        elif match and match.group('factor') == group:
            direction = "higher" if row['estimate'] > 0 else "lower"
            against = f" than {group} {reference}" if reference is not None else ""
            lines.append(
                f"Scores in {group} {match.group('level')} are {abs(row['estimate']):.2f} points "
                f"{direction}{against} ({ci_text}, {p_text}, {significance})."
            )
        elif ":" in term:
            lines.append(
                f"The {time} slope differs by {row['estimate']:.2f} points per {time} for {term.split(':')[-1]} "
                f"({ci_text}, {p_text}, {significance})."
            )
        else:
            lines.append(f"{term}: {row['estimate']:.2f} ({ci_text}, {p_text}, {significance}).")

    components = variance_components(fitted)
    lines.append(
        f"Between-subject variance {components['subject_variance']:.3f}, residual variance "
        f"{components['residual_variance']:.3f} (ICC = {components['icc']:.3f})."
    )
    return lines
