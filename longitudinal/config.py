from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

# ======================
# Column Names
# ======================

SUBJECT_COL = "subject_id"
GROUP_COL = "drug"
TIME_COL = "week"
OUTCOME_COL = "score"

# Adjustment names understood by the post-hoc comparator
VALID_ADJUSTMENTS = ("none", "bonf", "holm", "fdr_bh")
VALID_NORMALITY_METHODS = ("shapiro", "ks")


# ======================
# Data Classes
# ======================

@dataclass
class ArmConfig:
    """A treatment arm and its expected score trajectory."""
    name: str
    baseline_start: float  # Expected score at the first time point
    baseline_end: float    # Expected score at the last time point
    n_subjects: Optional[int] = None  # None = even share of the total


def default_arms() -> List[ArmConfig]:
    return [
        ArmConfig(name="A", baseline_start=60.0, baseline_end=70.0),
        ArmConfig(name="B", baseline_start=70.0, baseline_end=80.0),
    ]


@dataclass
class SimulationConfig:
    """Parameters of the synthetic longitudinal panel."""
    n_subjects: int = 60
    n_timepoints: int = 6
    arms: List[ArmConfig] = field(default_factory=default_arms)
    noise_sd: float = 2.0
    subject_sd: float = 0.0  # Random intercept sd; 0 disables it
    seed: int = 123

    def __post_init__(self):
        if self.n_subjects <= 0:
            raise ValueError(f"n_subjects must be positive, got {self.n_subjects}")
        if self.n_timepoints <= 0:
            raise ValueError(f"n_timepoints must be positive, got {self.n_timepoints}")
        if self.noise_sd < 0:
            raise ValueError(f"noise_sd must be non-negative, got {self.noise_sd}")
        if self.subject_sd < 0:
            raise ValueError(f"subject_sd must be non-negative, got {self.subject_sd}")
        if not self.arms:
            raise ValueError("At least one arm is required")

        names = [arm.name for arm in self.arms]
        if len(set(names)) != len(names):
            raise ValueError(f"Arm names must be unique, got {names}")

        explicit = [arm.n_subjects for arm in self.arms if arm.n_subjects is not None]
        if any(n <= 0 for n in explicit):
            raise ValueError("Arm subject counts must be positive")
        if len(explicit) == len(self.arms):
            if sum(explicit) != self.n_subjects:
                raise ValueError(
                    f"Arm subject counts sum to {sum(explicit)}, expected {self.n_subjects}"
                )
        elif explicit:
            raise ValueError("Either all arms or none must specify n_subjects")
        elif self.n_subjects % len(self.arms) != 0:
            raise ValueError(
                f"{self.n_subjects} subjects cannot be split evenly across {len(self.arms)} arms"
            )

    def arm_sizes(self) -> Dict[str, int]:
        """Number of subjects allocated to each arm, in arm order."""
        if self.arms[0].n_subjects is not None:
            return {arm.name: arm.n_subjects for arm in self.arms}
        share = self.n_subjects // len(self.arms)
        return {arm.name: share for arm in self.arms}


def default_adjustments() -> Dict[str, str]:
    return {GROUP_COL: "none", TIME_COL: "bonf"}


@dataclass
class AnalysisConfig:
    """Settings shared by the model fitting, testing and post-hoc steps."""
    alpha: float = 0.05
    sphericity_threshold: float = 0.75  # Mauchly's W above this -> Huynh-Feldt
    fit_method: Tuple[str, ...] = ("powell", "nm", "lbfgs")  # Tried in order; powell copes with a zero subject variance
    maxiter: int = 200
    posthoc_adjustments: Dict[str, str] = field(default_factory=default_adjustments)
    normality_methods: Tuple[str, ...] = VALID_NORMALITY_METHODS

    def __post_init__(self):
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be between 0 and 1, got {self.alpha}")
        if not 0 < self.sphericity_threshold <= 1:
            raise ValueError(
                f"sphericity_threshold must be in (0, 1], got {self.sphericity_threshold}"
            )
        if self.maxiter <= 0:
            raise ValueError(f"maxiter must be positive, got {self.maxiter}")
        for factor, method in self.posthoc_adjustments.items():
            if method not in VALID_ADJUSTMENTS:
                raise ValueError(f"Unknown adjustment '{method}' for factor '{factor}'")
        for method in self.normality_methods:
            if method not in VALID_NORMALITY_METHODS:
                raise ValueError(f"Unknown normality test method: {method}")
