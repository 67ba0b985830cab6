"""Unit tests for the end-to-end walkthrough, plots and command line entry point."""

import os
import shutil
import sys
import tempfile
import unittest

import matplotlib
matplotlib.use("Agg")

import matplotlib.pyplot as plt

# Add project root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

import run_walkthrough
from longitudinal.common.status import TaskStatus
from longitudinal.config import AnalysisConfig, SimulationConfig
from longitudinal.synthesis.synthesize import generate_longitudinal_data
from longitudinal.visualization import plots
from longitudinal.workflow import STEPS, WalkthroughResults, _step, render_report, run_walkthrough as run


class RunWalkthroughTest(unittest.TestCase):
    """The whole analysis on the default configuration, without figures."""

    @classmethod
    def setUpClass(cls):
        cls.results = run(make_figures=False)

    def test_every_step_finished(self):
        self.assertEqual(list(self.results.status), STEPS)
        for name, state in self.results.status.items():
            self.assertIn(state, (TaskStatus.COMPLETED, TaskStatus.WARNING), name)

    def test_selected_model(self):
        self.assertEqual(self.results.selected_model.name, 'time_drug')

    def test_results_populated(self):
        self.assertEqual(len(self.results.data), 360)
        self.assertEqual(len(self.results.models), 4)
        self.assertEqual(set(self.results.residual_checks), {'shapiro', 'ks'})
        self.assertEqual(set(self.results.posthoc), {'drug', 'week'})
        self.assertEqual(self.results.figures, {})

    def test_report_sections(self):
        report = render_report(self.results)
        for heading in ("Simulated data", "Multilevel model comparison", "Mixed ANOVA",
                        "ANOVA assumption checks", "Post-hoc comparisons", "Steps"):
            self.assertIn(heading, report)
        self.assertIn("Sphericity correction:", report)
        self.assertIn("drug (adjustment: none)", report)
        self.assertIn("week (adjustment: bonf)", report)


class StepStatusTest(unittest.TestCase):

    def test_failing_step_is_marked_and_raises(self):
        results = WalkthroughResults(SimulationConfig(), AnalysisConfig())
        with self.assertRaises(RuntimeError):
            with _step(results, "fit_models"):
                raise RuntimeError("did not converge")
        self.assertIs(results.status["fit_models"], TaskStatus.FAILED)
        self.assertIs(results.status["compare_models"], TaskStatus.PENDING)
        self.assertTrue(results.status["fit_models"].finished)


class PlotsTest(unittest.TestCase):

    def setUp(self):
        """Temporary output directory."""
        self.data = generate_longitudinal_data(SimulationConfig())
        self.output_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Remove the output directory and any open figures."""
        shutil.rmtree(self.output_dir, ignore_errors=True)
        plt.close('all')

    def test_descriptive_plots_saved_as_svg(self):
        figures = {
            'boxplot': plots.plot_boxplot(self.data),
            'violin': plots.plot_violin(self.data),
            'trajectories': plots.plot_trajectories(self.data),
            'interaction': plots.plot_interaction(self.data),
        }
        paths = plots.save_figures(figures, self.output_dir)
        self.assertEqual(set(paths), set(figures))
        for path in paths.values():
            with open(path, encoding='utf-8') as handle:
                self.assertIn('<svg', handle.read())

    def test_trajectory_lines(self):
        fig = plots.plot_trajectories(self.data)
        # One line per subject plus one mean line per arm
        self.assertEqual(len(fig.axes[0].get_lines()), 62)


class MainTest(unittest.TestCase):

    def setUp(self):
        self.output_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.output_dir, ignore_errors=True)
        plt.close('all')

    def test_export(self):
        exit_code = run_walkthrough.main(["--output-dir", self.output_dir])
        self.assertEqual(exit_code, 0)
        for name in ("data.csv", "model_comparison.csv", "anova.csv", "posthoc_week.csv"):
            self.assertTrue(os.path.exists(os.path.join(self.output_dir, name)), name)
        figures = os.listdir(os.path.join(self.output_dir, "figures"))
        self.assertIn("trajectories.svg", figures)
        self.assertIn("information_criteria.svg", figures)

    def test_invalid_configuration_exit_code(self):
        self.assertEqual(run_walkthrough.main(["--subjects", "0"]), 1)


if __name__ == "__main__":
    unittest.main()
