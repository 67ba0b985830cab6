#!/usr/bin/env python3
"""
Longitudinal analysis walkthrough.
Simulates a two-arm drug trial with weekly measurements, fits and compares
nested mixed-effects models, then runs a mixed ANOVA with post-hoc tests.
"""

import argparse
import logging
import os
import sys

import matplotlib

# Configure logging
logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logging.captureWarnings(True)
logger = logging.getLogger("run_walkthrough")


def export_results(results, output_dir):
    """Write figures as SVG and the data and tables as CSV."""
    from longitudinal.visualization.plots import save_figures

    os.makedirs(output_dir, exist_ok=True)
    results.data.to_csv(os.path.join(output_dir, "data.csv"), index=False)
    results.descriptives.to_csv(os.path.join(output_dir, "descriptives.csv"), index=False)
    results.comparison.table.to_csv(os.path.join(output_dir, "model_comparison.csv"), index=False)
    results.coefficients.to_csv(os.path.join(output_dir, "coefficients.csv"), index=False)
    results.anova['anova_table'].to_csv(os.path.join(output_dir, "anova.csv"), index=False)
    for factor, table in results.posthoc.items():
        table.to_csv(os.path.join(output_dir, f"posthoc_{factor}.csv"), index=False)

    paths = save_figures(results.figures, os.path.join(output_dir, "figures"))
    logger.info(f"Wrote {len(paths)} figures and tables to {output_dir}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Longitudinal mixed-model walkthrough")
    parser.add_argument("--seed", type=int, default=123, help="Random seed for the simulated data")
    parser.add_argument("--subjects", type=int, default=60, help="Number of subjects")
    parser.add_argument("--weeks", type=int, default=6, help="Number of weekly measurements")
    parser.add_argument("--noise-sd", type=float, default=2.0, help="Measurement noise standard deviation")
    parser.add_argument("--subject-sd", type=float, default=0.0, help="Random intercept standard deviation")
    parser.add_argument("--alpha", type=float, default=0.05, help="Significance level")
    parser.add_argument("--output-dir", help="Write figures (SVG) and tables (CSV) here")
    parser.add_argument("--show", action="store_true", help="Show the figures interactively")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.show:
        matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    from longitudinal.config import AnalysisConfig, SimulationConfig
    from longitudinal.workflow import render_report, run_walkthrough

    try:
        simulation_config = SimulationConfig(
            n_subjects=args.subjects,
            n_timepoints=args.weeks,
            noise_sd=args.noise_sd,
            subject_sd=args.subject_sd,
            seed=args.seed,
        )
        analysis_config = AnalysisConfig(alpha=args.alpha)
        results = run_walkthrough(simulation_config, analysis_config,
                                  make_figures=bool(args.show or args.output_dir))
    except (ValueError, RuntimeError) as e:
        logger.error(f"Walkthrough failed: {e}")
        return 1

    print(render_report(results))

    if args.show:
        plt.show()
    if args.output_dir:
        export_results(results, args.output_dir)
    results.close_figures()
    return 0


if __name__ == "__main__":
    sys.exit(main())
