import logging
import warnings
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf

from longitudinal.config import GROUP_COL, OUTCOME_COL, SUBJECT_COL, TIME_COL

logger = logging.getLogger(__name__)


def count_parameters(result) -> int:
    """Estimated parameters of a mixed model: fixed effects, variance components and scale."""
    return int(len(result.params)) + 1


@dataclass
class FittedModel:
    """A named mixed-effects model fit and the formula that produced it."""
    name: str
    formula: str
    result: Any  # statsmodels MixedLMResults

    @property
    def fixed_effects(self) -> List[str]:
        return list(self.result.fe_params.index)

    @property
    def n_params(self) -> int:
        return count_parameters(self.result)

    @property
    def llf(self) -> float:
        return float(self.result.llf)

    @property
    def nobs(self) -> int:
        return int(self.result.nobs)

    @property
    def residuals(self) -> pd.Series:
        return self.result.resid

    @property
    def fitted_values(self) -> pd.Series:
        return self.result.fittedvalues


def model_formulas(outcome: str = OUTCOME_COL, time: str = TIME_COL,
                   group: str = GROUP_COL) -> List[Tuple[str, str]]:
    """
    The nested sequence of fixed-effect specifications, simplest first.

    Each entry adds terms to its predecessor:
    intercept only, + time, + group, + group x time.
    """
    return [
        ("intercept_only", f"{outcome} ~ 1"),
        ("time", f"{outcome} ~ {time}"),
        ("time_drug", f"{outcome} ~ {time} + {group}"),
        ("time_drug_interaction", f"{outcome} ~ {time} + {group} + {time}:{group}"),
    ]


def _fit_problem(result) -> Optional[str]:
    """Why a finished fit is unusable, or None if it is usable."""
    if not result.converged:
        return "did not converge"
    if not np.isfinite(result.llf):
        return f"non-finite log-likelihood ({result.llf})"
    if not np.all(np.isfinite(np.asarray(result.fe_params, dtype=float))):
        return "non-finite fixed effects"
    # Random effects cannot be predicted from a singular covariance
    cov_re = np.asarray(result.cov_re, dtype=float)
    if not np.all(np.isfinite(cov_re)) or np.linalg.eigvalsh(cov_re).min() <= 0:
        return "singular random-effects covariance"
    return None


def fit_mixed_model(data: pd.DataFrame, formula: str, name: str, subject: str = SUBJECT_COL,
                    method: Union[str, Sequence[str]] = ("powell", "nm", "lbfgs"),
                    maxiter: int = 200) -> FittedModel:
    """
    Fit one random-intercept mixed model by maximum likelihood.

    Parameters:
    -----------
    data : pd.DataFrame
        Long-format panel
    formula : str
        Patsy formula for the fixed effects
    name : str
        Label used in comparison tables and logs
    subject : str
        Grouping column; each subject gets its own random intercept
    method : str or sequence of str
        Optimizer(s), tried in order until one gives a usable fit
    maxiter : int
        Maximum optimizer iterations

    Returns:
    --------
    FittedModel

    Raises:
    -------
    RuntimeError
        If no optimizer gives a converged fit with a finite likelihood and a
        non-singular random-effects covariance.
    """
    methods = [method] if isinstance(method, str) else list(method)
    # ML, not REML: likelihoods across different fixed effects must be comparable
    model = smf.mixedlm(formula, data, groups=data[subject])

    failures = []
    for fit_method in methods:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                result = model.fit(reml=False, method=fit_method, maxiter=maxiter)
            except (np.linalg.LinAlgError, ValueError) as e:
                result = None
                problem = f"{type(e).__name__}: {e}"

        for warning in caught:
            logger.warning(f"[{name}/{fit_method}] {warning.category.__name__}: {warning.message}")

        if result is not None:
            problem = _fit_problem(result)
            if problem is None:
                logger.info(f"Fitted {name} with {fit_method}: {formula} (logLik={result.llf:.3f})")
                return FittedModel(name=name, formula=formula, result=result)

        logger.warning(f"[{name}] {fit_method} fit rejected: {problem}")
        failures.append(f"{fit_method}: {problem}")

    raise RuntimeError(f"Mixed model '{name}' ({formula}) could not be fit ({'; '.join(failures)})")


def fit_model_sequence(data: pd.DataFrame, outcome: str = OUTCOME_COL, time: str = TIME_COL,
                       group: str = GROUP_COL, subject: str = SUBJECT_COL,
                       method: Union[str, Sequence[str]] = ("powell", "nm", "lbfgs"),
                       maxiter: int = 200) -> List[FittedModel]:
    """
    Fit the four nested multilevel models on the same data.

    All models share the random intercept per subject and differ only in
    their fixed effects. Any non-converging fit stops the sequence.
    """
    data_clean = data.dropna(subset=[outcome, time, group, subject])
    if len(data_clean) != len(data):
        raise ValueError(
            f"{len(data) - len(data_clean)} rows have missing values; "
            "nested models must be fit on identical data"
        )

    fitted = []
    for name, formula in model_formulas(outcome, time, group):
        fitted.append(fit_mixed_model(data_clean, formula, name, subject=subject,
                                      method=method, maxiter=maxiter))
    return fitted
