"""Unit tests for the mixed ANOVA and its post-hoc comparisons."""

import os
import sys
import unittest
from unittest import mock

import numpy as np
import pandas as pd
import pingouin as pg
from scipy import stats

# Add project root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from longitudinal.assumptions.tests import SphericityCorrection, select_sphericity_correction
from longitudinal.config import SimulationConfig
from longitudinal.models.mixed_anova import mixed_anova
from longitudinal.models.posthoc import _normalize_columns, pairwise_comparisons, run_posthoc
from longitudinal.synthesis.synthesize import generate_longitudinal_data


class MixedAnovaTest(unittest.TestCase):
    """drug (between) x week (within) on the default panel."""

    @classmethod
    def setUpClass(cls):
        cls.data = generate_longitudinal_data(SimulationConfig())
        cls.results = mixed_anova(cls.data, figures=False)
        cls.table = cls.results['anova_table'].set_index('source')

    def test_three_sources(self):
        self.assertEqual(list(self.results['anova_table']['source']), ['drug', 'week', 'Interaction'])

    def test_main_effects_significant(self):
        self.assertTrue(self.table.loc['drug', 'significant'])
        self.assertTrue(self.table.loc['week', 'significant'])
        self.assertEqual(self.results['significant_effects'], ['drug', 'week'])

    def test_between_factor_is_not_corrected(self):
        row = self.table.loc['drug']
        self.assertEqual(row['epsilon'], 1.0)
        self.assertEqual(row['df1_corr'], row['df1'])
        self.assertEqual(row['p_corr'], row['p_unc'])

    def test_within_rows_use_selected_epsilon(self):
        sphericity = self.results['sphericity']
        self.assertIs(self.results['correction'], select_sphericity_correction(sphericity['statistic']))
        for source in ('week', 'Interaction'):
            row = self.table.loc[source]
            self.assertAlmostEqual(row['epsilon'], sphericity['epsilon'])
            self.assertAlmostEqual(row['df1_corr'], row['df1'] * row['epsilon'])
            self.assertAlmostEqual(row['df2_corr'], row['df2'] * row['epsilon'])
            self.assertAlmostEqual(row['p_corr'], stats.f.sf(row['F'], row['df1_corr'], row['df2_corr']))

    def test_degrees_of_freedom(self):
        """60 subjects in 2 arms measured at 6 weeks."""
        self.assertEqual(self.table.loc['drug', 'df1'], 1)
        self.assertEqual(self.table.loc['drug', 'df2'], 58)
        self.assertEqual(self.table.loc['week', 'df1'], 5)
        self.assertEqual(self.table.loc['week', 'df2'], 290)

    def test_residuals_cover_every_observation(self):
        self.assertEqual(len(self.results['residuals']), len(self.data))
        self.assertAlmostEqual(float(np.mean(self.results['residuals'])), 0.0, places=8)

    def test_assumption_checks_present(self):
        expected = {'normality_shapiro', 'normality_ks', 'sphericity_week'}
        expected.update(f"homogeneity_week_{week}" for week in range(1, 7))
        self.assertEqual(set(self.results['assumptions']), expected)

    def test_too_few_subjects(self):
        small = self.data[self.data['subject_id'] <= 2]
        with self.assertRaises(ValueError):
            mixed_anova(small, figures=False)

    def test_forced_greenhouse_geisser(self):
        """A threshold of 1 always selects the stronger correction."""
        results = mixed_anova(self.data, w_threshold=1.0, figures=False)
        self.assertIs(results['correction'], SphericityCorrection.GREENHOUSE_GEISSER)
        self.assertAlmostEqual(results['sphericity']['epsilon'],
                               min(results['sphericity']['greenhouse_geisser_epsilon'], 1.0))

    def test_both_pingouin_column_spellings(self):
        """Older pingouin releases name the p-value column "p-unc"."""
        original = pg.mixed_anova

        def old_spelling(*args, **kwargs):
            return original(*args, **kwargs).rename(columns={'p_unc': 'p-unc'})

        with mock.patch.object(pg, 'mixed_anova', side_effect=old_spelling):
            results = mixed_anova(self.data, figures=False)
        np.testing.assert_allclose(results['anova_table']['p_unc'],
                                   self.results['anova_table']['p_unc'])


class PosthocTest(unittest.TestCase):
    """Pairwise follow-ups for the significant main effects."""

    @classmethod
    def setUpClass(cls):
        cls.data = generate_longitudinal_data(SimulationConfig())
        cls.anova = mixed_anova(cls.data, figures=False)
        cls.posthoc = run_posthoc(cls.anova, cls.data, {'drug': 'none', 'week': 'bonf'})

    def test_one_table_per_significant_effect(self):
        self.assertEqual(set(self.posthoc), {'drug', 'week'})

    def test_drug_pair_unadjusted(self):
        table = self.posthoc['drug']
        self.assertEqual(len(table), 1)
        row = table.iloc[0]
        self.assertEqual((row['group1'], row['group2']), ('A', 'B'))
        self.assertEqual(row['padjust'], 'none')
        self.assertEqual(row['p_adj'], row['p_unc'])
        self.assertLess(row['estimate'], 0)
        self.assertTrue(row['significant'])

    def test_drug_matches_independent_t_test_on_subject_means(self):
        means = self.data.groupby(['subject_id', 'drug'], as_index=False)['score'].mean()
        expected = stats.ttest_ind(means.loc[means['drug'] == 'A', 'score'],
                                   means.loc[means['drug'] == 'B', 'score'])
        row = self.posthoc['drug'].iloc[0]
        self.assertAlmostEqual(row['t'], expected.statistic, places=8)
        self.assertAlmostEqual(row['p_unc'], expected.pvalue, places=8)

    def test_week_pairs_bonferroni(self):
        table = self.posthoc['week']
        self.assertEqual(len(table), 15)
        self.assertTrue((table['padjust'] == 'bonf').all())
        expected = np.minimum(1.0, table['p_unc'] * 15)
        np.testing.assert_allclose(table['p_adj'], expected)

    def test_week_matches_paired_t_test(self):
        wide = self.data.pivot_table(index='subject_id', columns='week', values='score')
        expected = stats.ttest_rel(wide[1], wide[6])
        row = self.posthoc['week'].set_index(['group1', 'group2']).loc[(1, 6)]
        self.assertAlmostEqual(row['t'], expected.statistic, places=8)
        self.assertAlmostEqual(row['p_unc'], expected.pvalue, places=8)
        self.assertTrue(row['significant'])

    def test_confidence_intervals_contain_estimate(self):
        for table in self.posthoc.values():
            self.assertTrue((table['ci_lower'] < table['estimate']).all())
            self.assertTrue((table['estimate'] < table['ci_upper']).all())

    def test_bonferroni_widens_intervals(self):
        plain = pairwise_comparisons(self.data, 'week', 'within', padjust='none')
        bonf = self.posthoc['week']
        self.assertTrue(((bonf['ci_upper'] - bonf['ci_lower'])
                         > (plain['ci_upper'] - plain['ci_lower'])).all())

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            pairwise_comparisons(self.data, 'week', 'sideways')
        with self.assertRaises(ValueError):
            pairwise_comparisons(self.data, 'week', 'within', padjust='sidak2')

    def test_column_names_normalized(self):
        old = pd.DataFrame(columns=['Contrast', 'A', 'B', 'T', 'dof', 'p-unc', 'p-corr', 'hedges'])
        new = pd.DataFrame(columns=['Contrast', 'A', 'B', 'T', 'dof', 'p_unc', 'p_corr', 'hedges'])
        expected = ['contrast', 'a', 'b', 't', 'dof', 'p_unc', 'p_corr', 'hedges']
        self.assertEqual(list(_normalize_columns(old).columns), expected)
        self.assertEqual(list(_normalize_columns(new).columns), expected)

    def test_hedges_matches_pingouin(self):
        wide = self.data.pivot_table(index='subject_id', columns='week', values='score')
        expected = pg.compute_effsize(wide[1], wide[2], paired=True, eftype='hedges')
        row = self.posthoc['week'].set_index(['group1', 'group2']).loc[(1, 2)]
        self.assertAlmostEqual(row['hedges'], expected, places=8)

    def test_no_significant_effects_no_tables(self):
        anova = dict(self.anova, significant_effects=[])
        self.assertEqual(run_posthoc(anova, self.data, {'week': 'bonf'}), {})


if __name__ == "__main__":
    unittest.main()
