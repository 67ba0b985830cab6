"""
Sequential longitudinal analysis walkthrough.

Runs every step in order: simulate, describe, plot, fit the nested mixed
models, compare them, check residuals, interpret the selected model, run the
mixed ANOVA and its post-hoc tests. A failing step is marked FAILED and its
exception propagates, so nothing that depends on it runs.
"""

import logging
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import matplotlib.pyplot as plt
import pandas as pd

from longitudinal.assumptions.format import format_assumption_results
from longitudinal.assumptions.tests import run_residual_checks
from longitudinal.common.status import TaskStatus
from longitudinal.config import AnalysisConfig, SimulationConfig
from longitudinal.evaluation.evaluate import ModelComparison, compare_models, describe_comparison
from longitudinal.interpretation.interpret import (
    coefficient_table,
    fit_metrics,
    interpret_coefficients,
    variance_components,
)
from longitudinal.models.linear_mixed_effects_model import FittedModel, fit_model_sequence
from longitudinal.models.mixed_anova import mixed_anova
from longitudinal.models.posthoc import run_posthoc
from longitudinal.synthesis.synthesize import generate_longitudinal_data, summarize_panel
from longitudinal.visualization import plots

logger = logging.getLogger(__name__)

STEPS = [
    "synthesize",
    "describe",
    "visualize",
    "fit_models",
    "compare_models",
    "check_residuals",
    "interpret",
    "anova",
    "posthoc",
]


@dataclass
class WalkthroughResults:
    """Everything the walkthrough produced, filled in step by step."""
    simulation_config: SimulationConfig
    analysis_config: AnalysisConfig
    status: Dict[str, TaskStatus] = field(
        default_factory=lambda: OrderedDict((step, TaskStatus.PENDING) for step in STEPS)
    )
    data: Optional[pd.DataFrame] = None
    descriptives: Optional[pd.DataFrame] = None
    models: List[FittedModel] = field(default_factory=list)
    comparison: Optional[ModelComparison] = None
    selected_model: Optional[FittedModel] = None
    residual_checks: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    coefficients: Optional[pd.DataFrame] = None
    interpretation: List[str] = field(default_factory=list)
    variance: Dict[str, float] = field(default_factory=dict)
    metrics: Dict[str, float] = field(default_factory=dict)
    anova: Optional[Dict[str, Any]] = None
    posthoc: Dict[str, pd.DataFrame] = field(default_factory=dict)
    figures: Dict[str, plt.Figure] = field(default_factory=dict)

    def close_figures(self):
        for fig in self.figures.values():
            plt.close(fig)
        self.figures.clear()


@contextmanager
def _step(results: WalkthroughResults, name: str):
    results.status[name] = TaskStatus.RUNNING
    logger.info(f"Step '{name}' started")
    try:
        yield
    except Exception:
        results.status[name] = TaskStatus.FAILED
        logger.error(f"Step '{name}' failed")
        raise
    if results.status[name] is TaskStatus.RUNNING:
        results.status[name] = TaskStatus.COMPLETED
    logger.info(f"Step '{name}' {results.status[name].value}")


def select_model(models: List[FittedModel], comparison: ModelComparison) -> FittedModel:
    """The model to interpret: best by BIC, the more conservative criterion."""
    by_name = {m.name: m for m in models}
    return by_name[comparison.best_bic_model]


def run_walkthrough(simulation_config: Optional[SimulationConfig] = None,
                    analysis_config: Optional[AnalysisConfig] = None,
                    make_figures: bool = True) -> WalkthroughResults:
    """
    Run the whole analysis top to bottom.

    Args:
        simulation_config (SimulationConfig, optional): Data generation settings
        analysis_config (AnalysisConfig, optional): Testing and fitting settings
        make_figures (bool): Render plots and assumption figures

    Returns:
        WalkthroughResults: Data, models, tables and figures of every step
    """
    simulation_config = simulation_config or SimulationConfig()
    analysis_config = analysis_config or AnalysisConfig()
    alpha = analysis_config.alpha
    results = WalkthroughResults(simulation_config, analysis_config)

    with _step(results, "synthesize"):
        results.data = generate_longitudinal_data(simulation_config)
    data = results.data

    with _step(results, "describe"):
        results.descriptives = summarize_panel(data)

    with _step(results, "visualize"):
        if make_figures:
            results.figures['boxplot'] = plots.plot_boxplot(data)
            results.figures['violin'] = plots.plot_violin(data)
            results.figures['trajectories'] = plots.plot_trajectories(data)
            results.figures['interaction'] = plots.plot_interaction(data)

    with _step(results, "fit_models"):
        results.models = fit_model_sequence(
            data, method=analysis_config.fit_method, maxiter=analysis_config.maxiter
        )

    with _step(results, "compare_models"):
        results.comparison = compare_models(results.models, alpha=alpha)
        results.selected_model = select_model(results.models, results.comparison)
        if not results.comparison.criteria_agree:
            results.status["compare_models"] = TaskStatus.WARNING
        if make_figures:
            results.figures['information_criteria'] = plots.plot_information_criteria(results.comparison.table)

    selected = results.selected_model

    with _step(results, "check_residuals"):
        results.residual_checks = run_residual_checks(
            selected.residuals, methods=analysis_config.normality_methods,
            alpha=alpha, figures=make_figures
        )
        if make_figures:
            results.figures['model_residuals'] = plots.plot_residuals(
                selected.fitted_values, selected.residuals, title=f'Residuals vs Fitted ({selected.name})'
            )
            results.figures['model_residual_qq'] = plots.plot_residual_qq(selected.residuals)

    with _step(results, "interpret"):
        results.coefficients = coefficient_table(selected, alpha)
        results.interpretation = interpret_coefficients(selected, alpha)
        results.variance = variance_components(selected)
        results.metrics = fit_metrics(selected)

    with _step(results, "anova"):
        results.anova = mixed_anova(
            data,
            alpha=alpha,
            w_threshold=analysis_config.sphericity_threshold,
            normality_methods=analysis_config.normality_methods,
            figures=make_figures,
        )
        if make_figures:
            results.figures['anova_residuals'] = plots.plot_residuals(
                results.anova['predicted'], results.anova['residuals'], title='ANOVA residuals vs predicted'
            )

    with _step(results, "posthoc"):
        results.posthoc = run_posthoc(results.anova, data, analysis_config.posthoc_adjustments)

    return results


def _table(df: pd.DataFrame, float_format="{:.4f}".format) -> str:
    return df.to_string(index=False, float_format=float_format)


def render_report(results: WalkthroughResults) -> str:
    """Console report of a finished walkthrough."""
    sections = []

    def section(title, body):
        sections.append(f"{title}\n{'=' * len(title)}\n{body}")

    config = results.simulation_config
    section(
        "Simulated data",
        f"{len(results.data)} observations, {config.n_subjects} subjects, "
        f"{config.n_timepoints} time points, seed {config.seed}\n\n"
        + _table(results.descriptives, "{:.2f}".format)
    )

    comparison = results.comparison
    columns = ['model', 'n_params', 'log_likelihood', 'aic', 'bic', 'lr_chi2', 'lr_df', 'lr_p_value']
    section(
        "Multilevel model comparison",
        _table(comparison.table[columns]) + "\n\n" + "\n".join(describe_comparison(comparison))
    )

    section(
        f"Residual checks ({results.selected_model.name})",
        format_assumption_results(results.residual_checks)
    )

    metrics = results.metrics
    section(
        f"Coefficients ({results.selected_model.name}: {results.selected_model.formula})",
        _table(results.coefficients) + "\n\n" + "\n".join(results.interpretation)
        + f"\nRMSE = {metrics['rmse']:.3f}, MAE = {metrics['mae']:.3f}"
    )

    anova = results.anova
    correction = anova['correction'].value if anova['correction'] is not None else "none"
    anova_columns = ['source', 'F', 'df1', 'df2', 'p_unc', 'epsilon', 'df1_corr', 'df2_corr', 'p_corr', 'np2']
    section(
        "Mixed ANOVA",
        _table(anova['anova_table'][anova_columns]) + f"\n\nSphericity correction: {correction}"
    )
    section("ANOVA assumption checks", format_assumption_results(anova['assumptions']))

    if results.posthoc:
        blocks = []
        for factor, table in results.posthoc.items():
            blocks.append(f"{factor} (adjustment: {table['padjust'].iloc[0]})\n"
                          + _table(table.drop(columns=['factor', 'padjust'])))
        section("Post-hoc comparisons", "\n\n".join(blocks))
    else:
        section("Post-hoc comparisons", "No significant main effects.")

    status = ", ".join(f"{name}={state.value}" for name, state in results.status.items())
    section("Steps", status)
    return "\n\n".join(sections)
