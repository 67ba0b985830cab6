import logging
from typing import Optional

import numpy as np
import pandas as pd

from longitudinal.config import (
    GROUP_COL,
    OUTCOME_COL,
    SUBJECT_COL,
    TIME_COL,
    SimulationConfig,
)

logger = logging.getLogger(__name__)


def generate_longitudinal_data(config: Optional[SimulationConfig] = None) -> pd.DataFrame:
    """
    Generate a balanced two-arm longitudinal panel.

    Each arm's expected score moves linearly from its baseline start to its
    baseline end across the time points. Every observation gets independent
    Gaussian noise, and optionally every subject gets a random intercept.

    Parameters:
    -----------
    config : SimulationConfig, optional
        Simulation parameters. Defaults to 60 subjects, 6 weeks,
        arm A 60->70, arm B 70->80, noise sd 2 and seed 123.

    Returns:
    --------
    pd.DataFrame
        One row per subject and week with columns subject_id, drug, week, score.
    """
    if config is None:
        config = SimulationConfig()

    rng = np.random.default_rng(config.seed)
    weeks = np.arange(1, config.n_timepoints + 1)
    arm_sizes = config.arm_sizes()

    frames = []
    next_subject = 1
    for arm in config.arms:
        n_arm = arm_sizes[arm.name]
        trend = np.linspace(arm.baseline_start, arm.baseline_end, config.n_timepoints)
        noise = rng.normal(0.0, config.noise_sd, size=(n_arm, config.n_timepoints))
        scores = trend + noise

        if config.subject_sd > 0:
            intercepts = rng.normal(0.0, config.subject_sd, size=(n_arm, 1))
            scores = scores + intercepts

        subject_ids = np.arange(next_subject, next_subject + n_arm)
        next_subject += n_arm

        frames.append(pd.DataFrame({
            SUBJECT_COL: np.repeat(subject_ids, config.n_timepoints),
            GROUP_COL: arm.name,
            TIME_COL: np.tile(weeks, n_arm),
            OUTCOME_COL: scores.ravel(),
        }))

    data = pd.concat(frames, ignore_index=True)
    logger.info(
        f"Generated {len(data)} observations for {config.n_subjects} subjects "
        f"across {len(config.arms)} arms (seed={config.seed})"
    )
    return data


def check_balanced_panel(data: pd.DataFrame, subject: str = SUBJECT_COL, time: str = TIME_COL) -> bool:
    """Return True if every subject has exactly one observation per time point."""
    if data.empty:
        return False
    counts = pd.crosstab(data[subject], data[time])
    return bool((counts == 1).all().all())


def summarize_panel(data: pd.DataFrame, outcome: str = OUTCOME_COL,
                    group: str = GROUP_COL, time: str = TIME_COL) -> pd.DataFrame:
    """Descriptive statistics of the outcome for every group x time cell."""
    summary = (
        data.groupby([group, time])[outcome]
        .agg(n="count", mean="mean", sd="std", min="min", max="max")
        .reset_index()
    )
    return summary
