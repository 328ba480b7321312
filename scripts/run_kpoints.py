#!/usr/bin/env python
"""
Pipeline execution script for kpoints site selection.

This script orchestrates the complete workflow:
  1. Load configuration
  2. Load target cells and raster template
  3. Validate the solver configuration
  4. Run kpoints for every k (and optionally compare criteria vectors)
  5. Save subset cells, summaries and traces
  6. Create figures

Usage:
    python scripts/run_kpoints.py                        # Solve for every k in klist
    python scripts/run_kpoints.py --compare-criteria     # Also compare criteria vectors
    python scripts/run_kpoints.py --skip-viz             # Skip figures
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Tuple

import pandas as pd
import yaml

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from gridsubset.area_accounting import RasterTemplate
from gridsubset.criteria_comparison import ComparisonResult, compare_criteria
from gridsubset.data_acquisition import (
    load_matching_rasters,
    load_target_table,
    save_subset,
    save_trace,
)
from gridsubset.kpoints import KpointsConfig, SolverResult, TargetCells, solve, validate_config
from gridsubset.utils import ConfigurationError

logger = logging.getLogger(__name__)


class KpointsPipeline:
    """Pipeline orchestrator for kpoints site selection."""

    def __init__(self, config_path: Path, output_dir: Path = None):
        """
        Initialize pipeline with configuration.

        Args:
            config_path: Path to config.yaml
            output_dir: Optional override for output directory
        """
        self.config_path = Path(config_path)
        self.config = self._load_config()

        self.output_dir = Path(output_dir) if output_dir else Path(self.config["output"]["base_dir"])
        self.kpoints_config = KpointsConfig.from_dict(self.config["kpoints"])

        self._setup_logging()
        logger.info(f"Kpoints pipeline initialized with config: {self.config_path}")

    def _load_config(self) -> Dict:
        """Load configuration from YAML."""
        with open(self.config_path) as f:
            config = yaml.safe_load(f)

        logger.info(f"Configuration loaded: {len(config)} top-level sections")
        return config

    def _setup_logging(self):
        """Configure logging to file and console."""
        log_dir = Path(self.config["logging"]["log_dir"])
        log_dir.mkdir(parents=True, exist_ok=True)

        log_file = log_dir / f"kpoints_{pd.Timestamp.now().strftime('%Y%m%d_%H%M%S')}.log"

        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

        # File handler
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG)

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

        logger.info(f"Logging initialized: {log_file}")

    def load_inputs(self) -> Tuple[TargetCells, RasterTemplate]:
        """
        Load target cells and raster template.

        Uses the matching-variable rasters when configured, otherwise a
        prepared target table plus a template raster.

        Returns:
            Tuple of (TargetCells, RasterTemplate)
        """
        data_config = self.config["data"]
        variables = data_config.get("variables")

        if data_config.get("rasters"):
            rasters = {name: Path(p) for name, p in data_config["rasters"].items()}
            df, template = load_matching_rasters(rasters)
        else:
            df = load_target_table(Path(data_config["target_table"]))
            template = RasterTemplate.from_raster(Path(data_config["template_raster"]))

        cells = TargetCells.from_dataframe(df, variables=variables)
        logger.info(f"✓ Inputs loaded: {len(cells)} target cells, variables {cells.variables}")
        return cells, template

    def validate_inputs(self, cells: TargetCells) -> bool:
        """
        Validate the solver configuration against the loaded cells.

        Returns:
            True if all validations pass
        """
        logger.info("Validating kpoints configuration")

        try:
            validate_config(self.kpoints_config, len(cells), cells.n_variables)
        except ConfigurationError as e:
            logger.error(f"✗ Configuration invalid: {e}")
            return False

        comparison = self.config.get("comparison", {})
        if comparison.get("enabled"):
            for criteria in comparison["criteria_list"]:
                try:
                    validate_config(
                        self.kpoints_config.replace(criteria=criteria, klist=comparison["k"]),
                        len(cells), cells.n_variables
                    )
                except ConfigurationError as e:
                    logger.error(f"✗ Comparison criteria {criteria} invalid: {e}")
                    return False

        logger.info("✓ All validation checks passed")
        return True

    def run_comparison(self, cells: TargetCells, template: RasterTemplate) -> ComparisonResult:
        """Compare the configured criteria vectors at a fixed k."""
        comparison = self.config["comparison"]
        logger.info(f"Comparing {len(comparison['criteria_list'])} criteria vectors at k={comparison['k']}")

        return compare_criteria(
            cells,
            comparison["criteria_list"],
            comparison["k"],
            template,
            config=self.kpoints_config,
        )

    def save_outputs(self, results: List[SolverResult], comparison: ComparisonResult = None):
        """
        Save analysis results to output directory.

        Args:
            results: One SolverResult per k
            comparison: Optional criteria comparison
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)

        rows = []
        for result in results:
            save_subset(result, self.output_dir / f"subset_k{result.k}.csv")
            result.restart_summary.to_csv(self.output_dir / f"restarts_k{result.k}.csv", index=False)
            if result.trace is not None:
                save_trace(result, self.output_dir / f"trace_k{result.k}.csv")

            rows.append({
                "k": result.k,
                "represented_area_km2": result.represented_area_km2,
                "total_area_km2": result.total_area_km2,
                "represented_pct": result.represented_pct,
                "best_restart": result.best_restart,
                "best_iteration": result.best_iteration,
                "failed_restarts": len(result.failed_restarts),
            })

        summary_file = self.output_dir / "coverage_by_k.csv"
        pd.DataFrame(rows).to_csv(summary_file, index=False)
        logger.info(f"Saved coverage summary: {summary_file}")

        if comparison is not None:
            comparison_file = self.output_dir / "criteria_comparison.csv"
            comparison.table.to_csv(comparison_file, index=False)
            logger.info(f"Saved criteria comparison: {comparison_file}")

        logger.info(f"All outputs saved to {self.output_dir}")

    def create_figures(self, cells: TargetCells, results: List[SolverResult],
                       comparison: ComparisonResult = None):
        """Create coverage, trace and map figures."""
        import matplotlib.pyplot as plt
        from gridsubset.visualization import (
            plot_coverage_by_k,
            plot_criteria_comparison,
            plot_stopping_trace,
            plot_subset_map,
        )

        fig_dir = self.output_dir / "figures"
        coverage = pd.DataFrame([
            {"k": r.k, "represented_pct": r.represented_pct,
             "represented_area_km2": r.represented_area_km2}
            for r in results
        ])
        plt.close(plot_coverage_by_k(coverage, fig_dir / "coverage_by_k.png"))

        for result in results:
            plt.close(plot_subset_map(cells, result, fig_dir / f"subset_map_k{result.k}.png"))
            if result.trace is not None:
                plt.close(plot_stopping_trace(result.trace, fig_dir / f"stopping_trace_k{result.k}.png"))

        if comparison is not None:
            plt.close(plot_criteria_comparison(comparison.table, fig_dir / "criteria_comparison.png"))

    def run(self, compare: bool = False, skip_visualization: bool = False):
        """
        Execute full pipeline.

        Args:
            compare: If True, also run the criteria comparison
            skip_visualization: If True, skip figure generation
        """
        logger.info("🚀 Starting kpoints pipeline")
        logger.info("=" * 70)

        # Step 1: Inputs
        try:
            cells, template = self.load_inputs()
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"✗ Loading inputs failed: {e}")
            return

        # Step 2: Validation
        if not self.validate_inputs(cells):
            logger.error("Validation failed. Stopping.")
            return

        # Step 3: Solver
        results = solve(cells, self.kpoints_config, template)
        logger.info(f"✓ Solver complete for k = {[r.k for r in results]}")

        # Step 4: Criteria comparison
        comparison = None
        if compare or self.config.get("comparison", {}).get("enabled"):
            comparison = self.run_comparison(cells, template)
            logger.info("✓ Criteria comparison complete")

        # Step 5: Save outputs
        self.save_outputs(results, comparison)

        # Step 6: Figures
        if not skip_visualization:
            try:
                self.create_figures(cells, results, comparison)
                logger.info("✓ Figures created")
            except (OSError, ValueError) as e:
                logger.error(f"✗ Figure generation failed: {e}")

        logger.info("\n" + "=" * 70)
        logger.info("✅ Pipeline execution complete")

    def print_summary(self):
        """Print configuration summary."""
        options = self.kpoints_config.describe()
        logger.info("\n📋 Configuration Summary:")
        logger.info(f"  Criteria: {options['criteria']}")
        logger.info(f"  k values: {options['klist']}")
        logger.info(f"  Restarts: {options['n_starts']} | iter: {options['iter']} | min_area: {options['min_area']} km²")
        logger.info(f"  Output Directory: {self.output_dir}")


def main():
    """Parse arguments and execute pipeline."""
    parser = argparse.ArgumentParser(
        description="Select representative subset cells with the kpoints algorithm"
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent.parent / "config" / "config.yaml",
        help="Path to config.yaml"
    )

    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Override output directory"
    )

    parser.add_argument(
        "--compare-criteria",
        action="store_true",
        help="Compare the criteria vectors listed in the comparison section"
    )

    parser.add_argument(
        "--skip-viz",
        action="store_true",
        help="Skip visualization generation"
    )

    args = parser.parse_args()

    pipeline = KpointsPipeline(config_path=args.config, output_dir=args.output_dir)
    pipeline.print_summary()
    pipeline.run(compare=args.compare_criteria, skip_visualization=args.skip_viz)


if __name__ == "__main__":
    main()
