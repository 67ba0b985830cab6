from enum import Enum
import logging

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pingouin as pg
from scipy import stats

from longitudinal.models.formatting import fig_to_svg, PASTEL_COLORS
from longitudinal.synthesis.synthesize import check_balanced_panel

logger = logging.getLogger(__name__)


class AssumptionResult(Enum):
    """Enum representing the result of an assumption check."""
    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"
    NOT_APPLICABLE = "not_applicable"

class SphericityCorrection(Enum):
    """Degrees-of-freedom corrections for violated sphericity."""
    HUYNH_FELDT = "huynh-feldt"  # Moderate
    GREENHOUSE_GEISSER = "greenhouse-geisser"  # Strong

class AssumptionTest:
    """Base class for statistical assumption tests."""

    def __init__(self, name, description):
        """
        Initialize an assumption test.

        Args:
            name (str): Name of the test
            description (str): Description of what the test checks
        """
        self.name = name
        self.description = description

    def run_test(self, *args, **kwargs):
        """
        Run the assumption test.

        Returns:
            dict: Test results with at minimum 'result', 'statistic', 'p_value' and 'details' keys
        """
        raise NotImplementedError("Subclasses must implement run_test method")

class NormalityTest(AssumptionTest):
    """Test for normality using Shapiro-Wilk or Kolmogorov-Smirnov tests."""

    def __init__(self):
        super().__init__(
            name="Normality Test",
            description="Tests whether the data follows a normal distribution",
        )

    def run_test(self, data, **kwargs):
        """
        Run normality test on the data.

        Args:
            data: Pandas Series or NumPy array of values to test (usually residuals)
            method (str, optional): 'shapiro' or 'ks'. Defaults to 'shapiro'.
            alpha (float, optional): Significance level. Defaults to 0.05.
            figures (bool, optional): Render Q-Q plot and histogram. Defaults to True.

        Returns:
            dict: Test results
        """
        method = kwargs.get('method', 'shapiro')
        alpha = kwargs.get('alpha', 0.05)
        make_figures = kwargs.get('figures', True)
        data = pd.Series(np.asarray(data, dtype=float)).dropna()
        warnings = []

        if method not in ('shapiro', 'ks'):
            raise ValueError(f"Unknown normality test method: {method}")

        if len(data) < 3:
            return {
                'result': AssumptionResult.NOT_APPLICABLE,
                'statistic': None,
                'p_value': None,
                'details': "Not enough data points for normality test",
                'test_used': method,
                'skewness': None,
                'kurtosis': None,
                'warnings': ["Sample size too small for normality testing"],
                'figures': {}
            }

        skewness = float(stats.skew(data))
        # Excess kurtosis (normal = 0)
        kurtosis = float(stats.kurtosis(data))

        if method == 'shapiro':
            # Shapiro-Wilk test, based on the ordered sample
            if len(data) > 5000:
                warnings.append(f"Sample size ({len(data)}) not ideal for Shapiro-Wilk test")

            statistic, p_value = stats.shapiro(data)
            test_used = 'Shapiro-Wilk'
        else:
            # Kolmogorov-Smirnov test against a normal with the sample moments
            statistic, p_value = stats.kstest(data, 'norm', args=(data.mean(), data.std()))
            test_used = 'Kolmogorov-Smirnov'

        statistic = float(statistic)
        p_value = float(p_value)

        # Determine result
        if p_value > alpha:
            result = AssumptionResult.PASSED
            details = f"The data appears to be normally distributed ({test_used}: p={p_value:.4f})."
        else:
            result = AssumptionResult.FAILED
            details = f"The data does not appear to be normally distributed ({test_used}: p={p_value:.4f})."

            if abs(skewness) > 1:
                skew_direction = "positively" if skewness > 0 else "negatively"
                details += f" Data is {skew_direction} skewed (skewness={skewness:.2f})."

            if abs(kurtosis) > 1:
                kurt_type = "leptokurtic (heavy tails)" if kurtosis > 0 else "platykurtic (light tails)"
                details += f" Distribution is {kurt_type} (excess kurtosis={kurtosis:.2f})."

            warnings.append("Non-normal residuals may affect the validity of parametric tests")

        figures = {}
        if make_figures:
            figures = self._figures(data, skewness, kurtosis)

        return {
            'result': result,
            'statistic': statistic,
            'p_value': p_value,
            'details': details,
            'test_used': test_used,
            'skewness': skewness,
            'kurtosis': kurtosis,
            'warnings': warnings,
            'figures': figures
        }

    @staticmethod
    def _figures(data, skewness, kurtosis):
        fig_qq, ax_qq = plt.subplots(figsize=(8, 6))
        stats.probplot(data, plot=ax_qq)
        ax_qq.set_title('Q-Q Plot')

        # Histogram with normal curve overlay
        fig_hist, ax_hist = plt.subplots(figsize=(8, 6))
        ax_hist.hist(data, bins='auto', density=True, alpha=0.7, color=PASTEL_COLORS[0])
        x = np.linspace(data.min(), data.max(), 100)
        ax_hist.plot(x, stats.norm.pdf(x, data.mean(), data.std()), 'r-', lw=2)
        ax_hist.set_title(f'Histogram with Normal Curve\nSkewness: {skewness:.2f}, Kurtosis: {kurtosis + 3:.2f}')

        return {
            'qq_plot': fig_to_svg(fig_qq),
            'histogram': fig_to_svg(fig_hist)
        }

class HomogeneityOfVarianceTest(AssumptionTest):
    """Test for homogeneity of variance using Levene's or Bartlett's test."""

    def __init__(self):
        super().__init__(
            name="Homogeneity of Variance",
            description="Tests whether variances are equal across groups",
        )

    def run_test(self, data, groups, **kwargs):
        """
        Run homogeneity of variance test.

        Args:
            data: Series containing the outcome variable
            groups: Series containing group assignments
            method (str, optional): 'levene' or 'bartlett'. Defaults to 'levene'.
            alpha (float, optional): Significance level. Defaults to 0.05.
            figures (bool, optional): Render a boxplot. Defaults to True.

        Returns:
            dict: Test results
        """
        method = kwargs.get('method', 'levene')
        alpha = kwargs.get('alpha', 0.05)
        make_figures = kwargs.get('figures', True)
        data = pd.Series(data).reset_index(drop=True)
        groups = pd.Series(groups).reset_index(drop=True)
        warnings = []

        # Create list of samples, one for each group
        grouped_data = []
        group_names = []
        group_variances = {}

        for group in sorted(groups.unique()):
            group_data = data[groups == group].dropna()
            if len(group_data) > 0:
                grouped_data.append(group_data)
                group_names.append(str(group))
                group_variances[str(group)] = float(group_data.var())

        if len(grouped_data) < 2:
            return {
                'result': AssumptionResult.NOT_APPLICABLE,
                'statistic': None,
                'p_value': None,
                'details': "Need at least two groups for homogeneity test",
                'test_used': method,
                'group_variances': group_variances,
                'warnings': ["Insufficient groups for variance comparison"],
                'figures': {}
            }

        for name, group_data in zip(group_names, grouped_data):
            if len(group_data) < 3:
                warnings.append(f"Group {name} has fewer than 3 observations")

        if method == 'levene':
            statistic, p_value = stats.levene(*grouped_data)
            test_name = "Levene's test"
        elif method == 'bartlett':
            statistic, p_value = stats.bartlett(*grouped_data)
            test_name = "Bartlett's test"
        else:
            raise ValueError(f"Unknown homogeneity test method: {method}")

        statistic = float(statistic)
        p_value = float(p_value)

        if p_value > alpha:
            result = AssumptionResult.PASSED
            details = f"The variances appear to be homogeneous across groups ({test_name}: p={p_value:.4f})."
        else:
            result = AssumptionResult.FAILED
            details = f"The variances appear to be heterogeneous across groups ({test_name}: p={p_value:.4f})."
            warnings.append("Heterogeneous variances may affect the validity of parametric tests")

        figures = {}
        if make_figures:
            fig_boxplot, ax_boxplot = plt.subplots(figsize=(10, 6))
            ax_boxplot.boxplot(grouped_data)
            ax_boxplot.set_xticks(range(1, len(group_names) + 1))
            ax_boxplot.set_xticklabels(group_names)
            ax_boxplot.set_title('Boxplot by Group')
            ax_boxplot.set_ylabel('Value')
            ax_boxplot.set_xlabel('Group')
            figures['boxplot'] = fig_to_svg(fig_boxplot)

        return {
            'result': result,
            'statistic': statistic,
            'p_value': p_value,
            'details': details,
            'test_used': test_name,
            'group_variances': group_variances,
            'warnings': warnings,
            'figures': figures
        }

def select_sphericity_correction(mauchly_w, threshold=0.75):
    """
    Pick the sphericity correction for a given Mauchly's W.

    W above the threshold gets the moderate Huynh-Feldt correction,
    anything else the stronger Greenhouse-Geisser correction.
    """
    if mauchly_w > threshold:
        return SphericityCorrection.HUYNH_FELDT
    return SphericityCorrection.GREENHOUSE_GEISSER

def apply_sphericity_correction(f_value, df1, df2, epsilon):
    """Scale ANOVA degrees of freedom by epsilon and recompute the p-value."""
    epsilon = float(min(max(epsilon, 0.0), 1.0))
    df1_corr = df1 * epsilon
    df2_corr = df2 * epsilon
    return {
        'epsilon': epsilon,
        'df1': df1_corr,
        'df2': df2_corr,
        'p_value': float(stats.f.sf(f_value, df1_corr, df2_corr)),
    }

class SphericityTest(AssumptionTest):
    """Tests for sphericity in repeated measures designs."""

    def __init__(self):
        super().__init__(
            name="Sphericity Test",
            description="Tests whether variances of differences between all combinations of levels are equal.",
        )

    def run_test(self, data, subject_id, within_factor, outcome, **kwargs):
        """
        Run Mauchly's test of sphericity for repeated measures ANOVA.

        Parameters:
        -----------
        data : DataFrame
            Data containing the measurements
        subject_id : str
            Column name for subject identifier
        within_factor : str
            Column name for within-subjects factor
        outcome : str
            Column name for outcome variable
        alpha : float, optional
            Significance level (default 0.05)
        threshold : float, optional
            Mauchly's W above which the Huynh-Feldt correction is used (default 0.75)

        Returns:
        --------
        dict
            Dictionary containing test results

        Raises:
        -------
        ValueError
            If the design is not balanced.
        """
        alpha = kwargs.get('alpha', 0.05)
        threshold = kwargs.get('threshold', 0.75)

        if not check_balanced_panel(data, subject=subject_id, time=within_factor):
            raise ValueError(
                "Sphericity test requires a balanced design: every subject needs "
                f"exactly one observation at each level of '{within_factor}'"
            )

        levels = sorted(data[within_factor].unique())
        if len(levels) < 3:
            return {
                'result': AssumptionResult.NOT_APPLICABLE,
                'statistic': None,
                'p_value': None,
                'details': "Sphericity test requires at least 3 levels of the within-subjects factor.",
                'test_used': "Mauchly",
                'correction': None,
                'epsilon': 1.0,
                'warnings': [],
                'figures': {}
            }

        # Mauchly's test on the within-subject covariance structure
        _, w_value, chi2_value, dof, p_value = pg.sphericity(
            data=data, dv=outcome, within=within_factor, subject=subject_id
        )
        w_value = float(w_value)
        p_value = float(p_value)

        eps_gg = float(pg.epsilon(data=data, dv=outcome, within=within_factor, subject=subject_id, correction='gg'))
        eps_hf = float(pg.epsilon(data=data, dv=outcome, within=within_factor, subject=subject_id, correction='hf'))

        correction = select_sphericity_correction(w_value, threshold)
        epsilon = eps_hf if correction is SphericityCorrection.HUYNH_FELDT else eps_gg
        epsilon = min(epsilon, 1.0)

        warnings = []
        if p_value >= alpha:
            result = AssumptionResult.PASSED
            details = f"Sphericity assumption is met (Mauchly's W={w_value:.3f}, p={p_value:.4f})."
        elif correction is SphericityCorrection.HUYNH_FELDT:
            result = AssumptionResult.WARNING
            details = (f"Sphericity violated (Mauchly's W={w_value:.3f}, p={p_value:.4f}); "
                       f"applying the Huynh-Feldt correction (ε={epsilon:.3f}).")
            warnings.append(f"Sphericity assumption violated for factor {within_factor}.")
        else:
            result = AssumptionResult.FAILED
            details = (f"Sphericity violated (Mauchly's W={w_value:.3f}, p={p_value:.4f}); "
                       f"applying the Greenhouse-Geisser correction (ε={epsilon:.3f}).")
            warnings.append(f"Sphericity assumption violated for factor {within_factor}.")

        logger.info(f"Mauchly's W={w_value:.3f} for '{within_factor}': using {correction.value} correction")

        return {
            'result': result,
            'statistic': w_value,
            'p_value': p_value,
            'details': details,
            'test_used': "Mauchly",
            'chi_square': float(chi2_value),
            'df': float(dof),
            'greenhouse_geisser_epsilon': eps_gg,
            'huynh_feldt_epsilon': eps_hf,
            'correction': correction,
            'epsilon': epsilon,
            'levels': levels,
            'warnings': warnings,
            'figures': {}
        }

def run_residual_checks(residuals, methods=('shapiro', 'ks'), alpha=0.05, figures=True):
    """Run every requested normality test on a residual vector, keyed by method."""
    test = NormalityTest()
    return {
        method: test.run_test(residuals, method=method, alpha=alpha, figures=figures)
        for method in methods
    }
