# pipeline.py
"""
T2D Drug Response Cohort Pipeline
=================================

Main pipeline integrating all stage builders:

1. Post-drug biomarker values (6m / 12m) per biomarker
2. Response records (baseline, post values, responses)
3. 40% eGFR decline outcome
4. First-instance episode table
5. QDiabetes-HF / QRISK2 scores
6. Final merge and export
"""

import pandas as pd
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import logging

from t2d_drug_cohort.config.cohort_config import (
    BIOMARKERS,
    EPISODE_KEYS,
    RESPONSE_CONFIG,
    RISK_SCORE_CONFIG,
    RunConfig,
    ensure_directories,
    load_run_config,
)
from t2d_drug_cohort.extractors.table_loader import CohortInputs, TableLoader
from t2d_drug_cohort.processing.interval_resolver import resolve_all_biomarkers
from t2d_drug_cohort.processing.response_assembler import (
    assemble_responses,
    build_response_episodes,
    first_instance_baselines,
)
from t2d_drug_cohort.processing.renal_decline import find_egfr_decline
from t2d_drug_cohort.processing.episode_builder import build_all_drug_periods, build_episodes
from t2d_drug_cohort.processing.risk_score_adapter import RiskFormulas, calculate_risk_scores, load_formula
from t2d_drug_cohort.processing.stage_cache import StageCache
from t2d_drug_cohort.exporters.cohort_exporter import assemble_final, export_all_periods, export_cohort
from t2d_drug_cohort.validation.cohort_validators import (
    ValidationResult,
    assert_no_sentinel_dates,
    validate_final_table,
)

logger = logging.getLogger(__name__)


@dataclass
class CohortOutputs:
    """Tables produced by one run."""

    final: pd.DataFrame
    all_drug_periods: pd.DataFrame
    validation: ValidationResult


class DrugResponseCohortPipeline:
    """Build the first-instance drug episode dataset from upstream tables."""

    def __init__(
        self,
        formulas: RiskFormulas,
        biomarkers: Optional[List[str]] = None,
        cache: Optional[StageCache] = None,
        n_jobs: int = 1,
    ):
        """
        Initialize pipeline.

        Args:
            formulas: External QDiabetes-HF / QRISK2 functions
            biomarkers: Biomarkers to process (default: all 20)
            cache: Stage checkpoints (default: in-memory only)
            n_jobs: Worker processes for post-value resolution
        """
        self.formulas = formulas
        self.biomarkers = list(biomarkers) if biomarkers else list(BIOMARKERS)
        self.cache = cache or StageCache()
        self.n_jobs = n_jobs

    def cancel(self):
        """Stop before the next stage starts."""
        self.cache.cancel_event.set()

    def process_data(self, inputs: CohortInputs) -> CohortOutputs:
        """
        Run all stages on pre-loaded tables.

        Args:
            inputs: Upstream tables

        Returns:
            CohortOutputs with the final table, all drug periods and checks
        """
        cached = self.cache.cached
        merges = {b: inputs.biomarker_merges[b] for b in self.biomarkers}

        post_values = cached(
            'post_biomarkers',
            lambda: resolve_all_biomarkers(merges, n_jobs=self.n_jobs),
        )
        responses = cached(
            'response_biomarkers_long',
            lambda: assemble_responses(inputs.baseline, post_values, inputs.combo_timeline, self.biomarkers),
        )

        def build_decline() -> pd.DataFrame:
            egfr = RESPONSE_CONFIG.decline_biomarker
            baseline_egfr = first_instance_baselines(inputs.baseline, [egfr]).rename(
                columns={f'pre{egfr}': 'pre_value'}
            )
            return find_egfr_decline(baseline_egfr, inputs.egfr_long)

        egfr_decline = cached('response_biomarkers_egfr40', build_decline)

        response_episodes = cached(
            'response_biomarkers',
            lambda: build_response_episodes(inputs.baseline, inputs.combo_timeline, self.biomarkers)
            .merge(egfr_decline, on=EPISODE_KEYS, how='left'),
        )
        episodes = cached(
            't2d_1stinstance_interim',
            lambda: build_episodes(
                inputs.cohort,
                inputs.drug_periods,
                inputs.combo_timeline,
                response_episodes,
                inputs.features,
                inputs.death_causes,
            ),
        )
        scores = cached(
            'qscores',
            lambda: calculate_risk_scores(
                episodes,
                first_instance_baselines(inputs.baseline, RISK_SCORE_CONFIG.baseline_biomarkers),
                self.formulas,
            ),
        )
        final = cached(
            't2d_1stinstance',
            lambda: assemble_final(episodes, responses, scores, self.biomarkers),
        )
        all_periods = cached(
            't2d_all_drug_periods',
            lambda: build_all_drug_periods(inputs.cohort, inputs.drug_periods),
        )

        assert_no_sentinel_dates(final)
        validation = validate_final_table(final, self.biomarkers)
        return CohortOutputs(final=final, all_drug_periods=all_periods, validation=validation)

    def run(self, config: RunConfig) -> CohortOutputs:
        """
        Load inputs, build the dataset and export it.

        Args:
            config: Run settings (directories, format, shard threshold)

        Returns:
            CohortOutputs
        """
        print("=" * 60)
        print("T2D First-Instance Drug Episode Cohort")
        print("=" * 60)

        ensure_directories(config)

        print(f"\n1. Loading input tables from {config.input_dir}...")
        loader = TableLoader(config.input_dir, config.input_format)
        inputs = loader.load_all(self.biomarkers)
        print(f"   Cohort: {len(inputs.cohort):,} patients")
        print(f"   Drug periods: {len(inputs.drug_periods):,}")

        print(f"\n2. Building dataset for {len(self.biomarkers)} biomarkers...")
        outputs = self.process_data(inputs)

        print(f"\n3. Saving to {config.output_dir}...")
        paths = export_cohort(
            outputs.final,
            config.output_dir,
            prefix=config.output_prefix,
            shard_threshold=config.shard_threshold,
        )
        paths.append(export_all_periods(outputs.all_drug_periods, config.output_dir))

        print(outputs.validation.report())

        print("\n" + "=" * 60)
        print("Extraction Summary")
        print("=" * 60)
        final = outputs.final
        print(f"   Episodes: {len(final):,}")
        print(f"   Patients: {final['patid'].nunique():,}")
        print(f"   Columns: {len(final.columns)}")
        if 'hba1cresp12m' in final.columns:
            print(f"   HbA1c 12m response coverage: {final['hba1cresp12m'].notna().mean():.1%}")
        if 'qrisk2_10yr_score' in final.columns:
            print(f"   QRISK2 10yr coverage: {final['qrisk2_10yr_score'].notna().mean():.1%}")
        for path in paths:
            print(f"   Output: {path}")
        print("=" * 60)

        return outputs


# =============================================================================
# CLI
# =============================================================================

def main(argv: Optional[List[str]] = None):
    """Main entry point for CLI."""
    import argparse

    parser = argparse.ArgumentParser(description="Build the T2D first-instance drug episode dataset")
    parser.add_argument('--config', type=str, default=None, help='Run config YAML (default: config/pipeline.yaml)')
    parser.add_argument('--input-dir', type=str, default=None, help='Directory of input tables')
    parser.add_argument('--output-dir', type=str, default=None, help='Directory for exported files')
    parser.add_argument('--cache-dir', type=str, default=None, help='Directory for stage checkpoints')
    parser.add_argument('--no-cache', action='store_true', help='Do not read or write checkpoints')
    parser.add_argument('--refresh', action='store_true', help='Recompute stages that have checkpoints')
    parser.add_argument('--n-jobs', type=int, default=None, help='Worker processes for post-value resolution')
    parser.add_argument('--biomarkers', type=str, default=None, help="Comma-separated biomarkers (default: all)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    config = load_run_config(Path(args.config) if args.config else None)
    if args.input_dir:
        config.input_dir = Path(args.input_dir)
    if args.output_dir:
        config.output_dir = Path(args.output_dir)
    if args.cache_dir:
        config.cache_dir = Path(args.cache_dir)
    if args.no_cache:
        config.cache_dir = None
    if args.n_jobs is not None:
        config.n_jobs = args.n_jobs

    if not config.qdiabeteshf_formula or not config.qrisk2_formula:
        parser.error("qdiabeteshf_formula and qrisk2_formula must be set in the run config")

    formulas = RiskFormulas(
        qdiabeteshf=load_formula(config.qdiabeteshf_formula),
        qrisk2=load_formula(config.qrisk2_formula),
    )
    biomarkers = [b.strip() for b in args.biomarkers.split(',')] if args.biomarkers else None

    pipeline = DrugResponseCohortPipeline(
        formulas=formulas,
        biomarkers=biomarkers,
        cache=StageCache(config.cache_dir, refresh=args.refresh),
        n_jobs=config.n_jobs,
    )
    pipeline.run(config)


if __name__ == "__main__":
    main()
