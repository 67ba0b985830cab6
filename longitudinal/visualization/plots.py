import logging
import os
from typing import Dict

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from scipy import stats

from longitudinal.config import GROUP_COL, OUTCOME_COL, SUBJECT_COL, TIME_COL
from longitudinal.models.formatting import fig_to_svg, PASTEL_COLORS

logger = logging.getLogger(__name__)

# Darker partners of the pastel arm colours, for lines and markers
LINE_COLORS = ['#373C9B', '#852F30', '#2E7D32', '#9E9D24', '#8E24AA', '#00838F']


def plot_boxplot(data: pd.DataFrame, outcome=OUTCOME_COL, time=TIME_COL, group=GROUP_COL):
    """Distribution of the outcome per time point, split by group."""
    fig, ax = plt.subplots(figsize=(10, 6))
    sns.boxplot(data=data, x=time, y=outcome, hue=group,
                palette=PASTEL_COLORS[:data[group].nunique()], ax=ax)
    ax.set_title(f'{outcome.capitalize()} by {time} and {group}')
    ax.set_xlabel(time.capitalize())
    ax.set_ylabel(outcome.capitalize())
    return fig


def plot_violin(data: pd.DataFrame, outcome=OUTCOME_COL, time=TIME_COL, group=GROUP_COL):
    fig, ax = plt.subplots(figsize=(10, 6))
    n_groups = data[group].nunique()
    sns.violinplot(data=data, x=time, y=outcome, hue=group, split=n_groups == 2, inner='quart',
                   palette=PASTEL_COLORS[:n_groups], ax=ax)
    ax.set_title(f'{outcome.capitalize()} distribution by {time} and {group}')
    ax.set_xlabel(time.capitalize())
    ax.set_ylabel(outcome.capitalize())
    return fig


def plot_trajectories(data: pd.DataFrame, outcome=OUTCOME_COL, time=TIME_COL,
                      group=GROUP_COL, subject=SUBJECT_COL):
    """One line per subject over time, coloured by group."""
    fig, ax = plt.subplots(figsize=(10, 6))
    groups = sorted(data[group].unique())
    colors = {g: LINE_COLORS[i % len(LINE_COLORS)] for i, g in enumerate(groups)}

    for _, subject_data in data.groupby(subject):
        subject_data = subject_data.sort_values(time)
        g = subject_data[group].iloc[0]
        ax.plot(subject_data[time], subject_data[outcome], color=colors[g], alpha=0.3, lw=1)

    for g in groups:
        means = data[data[group] == g].groupby(time)[outcome].mean()
        ax.plot(means.index, means.values, color=colors[g], lw=3, marker='o', label=f'{group} {g} (mean)')

    ax.set_title('Individual trajectories')
    ax.set_xlabel(time.capitalize())
    ax.set_ylabel(outcome.capitalize())
    ax.legend()
    return fig


def plot_interaction(data: pd.DataFrame, outcome=OUTCOME_COL, time=TIME_COL, group=GROUP_COL):
    """Group means with 95% confidence intervals at every time point."""
    fig, ax = plt.subplots(figsize=(10, 6))
    sns.pointplot(data=data, x=time, y=outcome, hue=group, errorbar=('ci', 95),
                  palette=LINE_COLORS[:data[group].nunique()], dodge=0.2, ax=ax)
    ax.set_title(f'{group.capitalize()} x {time} interaction')
    ax.set_xlabel(time.capitalize())
    ax.set_ylabel(f'Mean {outcome}')
    return fig


def plot_residuals(fitted_values, residuals, title='Residuals vs Fitted'):
    fig, ax = plt.subplots(figsize=(8, 6))
    ax.scatter(np.asarray(fitted_values), np.asarray(residuals), alpha=0.6,
               color=LINE_COLORS[0], edgecolor='none')
    ax.axhline(0, color='red', linestyle='--', lw=1)
    ax.set_title(title)
    ax.set_xlabel('Fitted values')
    ax.set_ylabel('Residuals')
    return fig


def plot_residual_qq(residuals, title='Residual Q-Q Plot'):
    fig, ax = plt.subplots(figsize=(8, 6))
    stats.probplot(np.asarray(residuals, dtype=float), plot=ax)
    ax.set_title(title)
    return fig


def plot_information_criteria(comparison_table: pd.DataFrame):
    """Side-by-side AIC and BIC bars for every model in a comparison table."""
    fig, ax = plt.subplots(figsize=(10, 6))
    models_count = len(comparison_table)
    x_pos = np.arange(models_count)
    width = 0.35

    ax.bar(x_pos - width / 2, comparison_table['aic'], width, label='AIC', color=PASTEL_COLORS[0])
    ax.bar(x_pos + width / 2, comparison_table['bic'], width, label='BIC', color=PASTEL_COLORS[1])

    ax.set_xlabel('Model')
    ax.set_ylabel('Value')
    ax.set_title('AIC and BIC Comparison')
    ax.set_xticks(x_pos)
    ax.set_xticklabels(comparison_table['model'])

    # Zoom in on the differences, not the absolute level
    values = np.concatenate([comparison_table['aic'].to_numpy(), comparison_table['bic'].to_numpy()])
    span = values.max() - values.min()
    ax.set_ylim(values.min() - 0.1 * span - 1, values.max() + 0.1 * span + 1)
    ax.legend()

    if models_count > 3:
        plt.setp(ax.get_xticklabels(), rotation=30, ha='right')
        fig.tight_layout()
    return fig


def save_figures(figures: Dict[str, plt.Figure], output_dir: str) -> Dict[str, str]:
    """Write every figure as <name>.svg into output_dir and close it."""
    os.makedirs(output_dir, exist_ok=True)
    paths = {}
    for name, fig in figures.items():
        path = os.path.join(output_dir, f"{name}.svg")
        with open(path, 'w', encoding='utf-8') as handle:
            handle.write(fig_to_svg(fig))
        paths[name] = path
        logger.debug(f"Saved figure {path}")
    return paths
