"""Unit tests for coefficient tables and their plain-language reading."""

import os
import sys
import unittest

# Add project root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from longitudinal.config import SimulationConfig
from longitudinal.interpretation.interpret import (
    coefficient_table,
    fit_metrics,
    interpret_coefficients,
    variance_components,
)
from longitudinal.models.linear_mixed_effects_model import fit_mixed_model
from longitudinal.synthesis.synthesize import generate_longitudinal_data


class InterpretTest(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.data = generate_longitudinal_data(SimulationConfig())
        cls.fitted = fit_mixed_model(cls.data, "score ~ week + drug", "time_drug")
        cls.interaction = fit_mixed_model(cls.data, "score ~ week + drug + week:drug", "time_drug_interaction")

    def test_coefficient_table_terms(self):
        table = coefficient_table(self.fitted)
        self.assertEqual(set(table['term']), {'Intercept', 'week', 'drug[T.B]'})
        self.assertTrue((table['ci_lower'] < table['estimate']).all())
        self.assertTrue((table['estimate'] < table['ci_upper']).all())

    def test_drug_and_week_effects(self):
        table = coefficient_table(self.fitted).set_index('term')
        # Simulated: +10 points for arm B, +2 points per week
        self.assertAlmostEqual(table.loc['drug[T.B]', 'estimate'], 10.0, delta=1.5)
        self.assertAlmostEqual(table.loc['week', 'estimate'], 2.0, delta=0.3)
        self.assertTrue(table.loc['drug[T.B]', 'significant'])
        self.assertTrue(table.loc['week', 'significant'])

    def test_sentences(self):
        lines = interpret_coefficients(self.fitted)
        self.assertEqual(len(lines), 4)
        drug_line = next(line for line in lines if line.startswith("Scores in drug B"))
        self.assertIn("higher than drug A", drug_line)
        self.assertIn("95% CI", drug_line)
        self.assertIn("significant", drug_line)
        self.assertTrue(any("increase by" in line and "per week" in line for line in lines))
        self.assertIn("ICC", lines[-1])

    def test_interaction_sentence(self):
        lines = interpret_coefficients(self.interaction)
        self.assertTrue(any(line.startswith("The week slope differs") for line in lines))

    def test_confidence_level_follows_alpha(self):
        lines = interpret_coefficients(self.fitted, alpha=0.01)
        self.assertTrue(any("99% CI" in line for line in lines))

    def test_variance_components(self):
        components = variance_components(self.fitted)
        self.assertGreaterEqual(components['subject_variance'], 0.0)
        self.assertGreater(components['residual_variance'], 0.0)
        self.assertTrue(0.0 <= components['icc'] <= 1.0)

    def test_fit_metrics(self):
        metrics = fit_metrics(self.fitted)
        self.assertGreater(metrics['mae'], 0.0)
        self.assertGreaterEqual(metrics['rmse'], metrics['mae'])
        # Measurement noise sd is 2
        self.assertLess(metrics['rmse'], 3.0)


if __name__ == "__main__":
    unittest.main()
