"""
Colorectal Microarray Analysis Pipeline
=======================================

Main pipeline script that orchestrates:
1. Data loading and group labelling
2. Normalization and feature filtering
3. Exploratory sample structure (distributions, PCA, correlation)
4. Differential expression for each contrast
5. Probe annotation and gene set over-representation

Usage:
    python pipeline.py --config configs/config.yaml
"""

import argparse
import copy
import json
import sys
import yaml
import pandas as pd
from pathlib import Path
import logging
from datetime import datetime

from preprocessing.data_loader import (
    ExpressionDataLoader,
    fetch_geo,
    assign_groups,
    collapse_duplicate_features,
    filter_low_expression
)
from preprocessing.normalization import ArrayNormalizer
from exploration.sample_structure import SampleStructureAnalyzer
from de_analysis.differential_expression import DEAnalysis, filter_significant
from de_analysis.exceptions import DEAnalysisError
from enrichment.annotation import ProbeAnnotation
from enrichment.over_representation import OverRepresentationAnalysis, load_gene_sets

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'project': {'name': 'Colorectal cancer microarray DE'},
    'data': {
        'geo_accession': None,
        'geo_dir': 'data/raw',
        'series_matrix': None,
        'expression': None,
        'metadata': None,
        'annotation': None,
        'gene_sets': None,
        'results_dir': 'results',
    },
    'groups': {
        'order': ['Healthy', 'Adjacent', 'Tumor'],
        'column': 'group',
        'source_columns': None,
        'rules': [],
    },
    'preprocessing': {
        'log2': 'auto',
        'quantile_normalize': False,
        'min_expression': None,
        'min_samples': 1,
    },
    'exploration': {'n_components': 5},
    'de_analysis': {
        'contrasts': ['Tumor - Healthy', 'Adjacent - Healthy', 'Tumor - Adjacent'],
        'thresholds': {'padj': 0.05, 'log2fc': 1.0},
    },
    'enrichment': {
        'min_size': 10,
        'max_size': 500,
        'id_type': 'symbol',
        'annotation_columns': {
            'probe_col': 'ID',
            'symbol_col': 'Gene Symbol',
            'entrez_col': 'ENTREZ_GENE_ID',
        },
    },
}


def merge_config(base: dict, override: dict) -> dict:
    """Recursively overlay ``override`` on a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


class ExpressionPipeline:
    """Complete microarray differential expression pipeline."""

    def __init__(self, config_path: str):
        """
        Initialize pipeline with configuration.

        Parameters
        ----------
        config_path : str
            Path to YAML configuration file. Relative data paths are
            resolved against the configuration file's directory.
        """
        config_path = Path(config_path)
        with open(config_path, 'r') as f:
            self.config = merge_config(DEFAULT_CONFIG, yaml.safe_load(f) or {})

        self.base_dir = config_path.resolve().parent
        self.results_dir = self._path(self.config['data']['results_dir'])
        self.results_dir.mkdir(parents=True, exist_ok=True)

        self.groups = list(self.config['groups']['order'])
        self.group_col = self.config['groups']['column']

        # Initialize containers
        self.expression_raw = None
        self.metadata = None
        self.expression = None
        self.de = None
        self.de_results = None
        self.significant = None
        self.enrichment_results = None

        logger.info(f"Initialized pipeline for: {self.config['project']['name']}")

    def _path(self, value) -> Path:
        path = Path(value)
        return path if path.is_absolute() else self.base_dir / path

    def _optional_path(self, key: str):
        value = self.config['data'].get(key)
        return str(self._path(value)) if value else None

    def step1_load_data(self):
        """Load expression and metadata, then label sample groups."""
        logger.info("=== Step 1: Loading Data ===")

        accession = self.config['data'].get('geo_accession')
        if accession:
            self.expression_raw, metadata = fetch_geo(
                accession, destdir=str(self._path(self.config['data']['geo_dir']))
            )
        else:
            loader = ExpressionDataLoader(
                expression_file=self._optional_path('expression'),
                metadata_file=self._optional_path('metadata'),
                series_matrix_file=self._optional_path('series_matrix')
            )
            self.expression_raw, metadata = loader.load()

        rules = self.config['groups']['rules']
        if rules:
            metadata = assign_groups(
                metadata,
                rules,
                source_cols=self.config['groups']['source_columns'],
                group_col=self.group_col
            )
        elif self.group_col not in metadata.columns:
            raise DEAnalysisError(
                f"Metadata has no '{self.group_col}' column and no group rules are configured"
            )
        self.metadata = metadata

        self.metadata.to_csv(self.results_dir / "sample_metadata.csv")
        return self.expression_raw, self.metadata

    def step2_preprocess(self):
        """Normalize and filter the expression matrix."""
        logger.info("=== Step 2: Normalization and Filtering ===")

        if self.expression_raw is None:
            self.step1_load_data()

        settings = self.config['preprocessing']
        expression = collapse_duplicate_features(self.expression_raw)

        normalizer = ArrayNormalizer(expression)
        log2 = settings['log2']
        if log2 == 'auto':
            expression = normalizer.log2_transform()
        elif log2:
            expression = normalizer.log2_transform(force=True)
        if settings['quantile_normalize']:
            expression = normalizer.quantile_normalize()

        logger.info(f"\nNormalization summary:\n{normalizer.get_summary_stats()}")

        if settings['min_expression'] is not None:
            expression = filter_low_expression(
                expression,
                min_expr=settings['min_expression'],
                min_samples=settings['min_samples']
            )

        self.expression = expression
        return self.expression

    def step3_explore(self):
        """Summarize sample distributions, PCA and correlations."""
        logger.info("=== Step 3: Exploratory Analysis ===")

        if self.de is None:
            self._init_de()

        analyzer = SampleStructureAnalyzer(self.de.expression, self.de.metadata, self.group_col)

        analyzer.distribution_summary().to_csv(self.results_dir / "sample_distributions.csv")

        scores, variance = analyzer.pca_analysis(self.config['exploration']['n_components'])
        scores.to_csv(self.results_dir / "pca_scores.csv")
        pd.Series(
            variance, index=[f'PC{i+1}' for i in range(len(variance))], name='explained_variance'
        ).to_csv(self.results_dir / "pca_variance.csv")

        analyzer.correlation_matrix().to_csv(self.results_dir / "sample_correlation.csv")

        return scores, variance

    def _init_de(self):
        if self.expression is None:
            self.step2_preprocess()
        self.de = DEAnalysis(
            self.expression,
            self.metadata,
            groups=self.groups,
            group_col=self.group_col
        )

    def step4_differential_expression(self):
        """Fit the model and evaluate every configured contrast."""
        logger.info("=== Step 4: Differential Expression Analysis ===")

        if self.de is None:
            self._init_de()

        self.de_results = self.de.run_contrasts(self.config['de_analysis']['contrasts'])

        padj_thresh = self.config['de_analysis']['thresholds']['padj']
        lfc_thresh = self.config['de_analysis']['thresholds']['log2fc']

        self.significant = {}
        for name, result in self.de_results.items():
            result.table.to_csv(self.results_dir / f"de_{_slug(name)}.csv")

            sig = filter_significant(result, padj_threshold=padj_thresh, log2fc_threshold=lfc_thresh)
            self.significant[name] = sig
            result.table.loc[list(sig.features)].to_csv(
                self.results_dir / f"significant_{_slug(name)}.csv"
            )
            logger.info(
                f"{name}: {len(sig)} significant features "
                f"(padj<{padj_thresh}, |log2FC|>{lfc_thresh})"
            )

        summary = self.de.summarize(self.de_results, padj_thresh, lfc_thresh)
        summary.to_csv(self.results_dir / "de_summary.csv", index=False)
        logger.info(f"\nDE summary:\n{summary}")

        return self.de_results

    def step5_enrichment(self):
        """Map significant probes to genes and test gene set over-representation."""
        logger.info("=== Step 5: Enrichment Analysis ===")

        annotation_file = self._optional_path('annotation')
        gene_sets_file = self._optional_path('gene_sets')
        if not gene_sets_file:
            logger.warning("No gene sets configured, skipping enrichment")
            return None

        if self.de_results is None:
            self.step4_differential_expression()

        settings = self.config['enrichment']
        id_type = settings['id_type']
        annotation = None
        if annotation_file:
            annotation = ProbeAnnotation.from_file(
                annotation_file, **settings['annotation_columns']
            )

        ora = OverRepresentationAnalysis(
            load_gene_sets(gene_sets_file),
            min_size=settings['min_size'],
            max_size=settings['max_size']
        )

        universe_ids = list(self.de.expression.index)
        self.enrichment_results = {}
        for name, sig in self.significant.items():
            if annotation is not None:
                query = annotation.map_unique(sig.features, to=id_type)
                universe = annotation.map_unique(universe_ids, to=id_type)
                annotation.annotate(self.de_results[name]).to_csv(
                    self.results_dir / f"de_{_slug(name)}_annotated.csv"
                )
            else:
                query, universe = list(sig.features), universe_ids

            enriched = ora.run(query, universe)
            enriched.to_csv(self.results_dir / f"enrichment_{_slug(name)}.csv", index=False)
            self.enrichment_results[name] = enriched

        return self.enrichment_results

    def run_full_pipeline(self):
        """Run the complete analysis pipeline."""
        logger.info("="*60)
        logger.info("Starting Full Microarray Analysis Pipeline")
        logger.info("="*60)

        start_time = datetime.now()

        self.step1_load_data()
        self.step2_preprocess()
        self.step3_explore()
        self.step4_differential_expression()
        self.step5_enrichment()

        duration = datetime.now() - start_time

        logger.info("="*60)
        logger.info(f"Pipeline completed in {duration}")
        logger.info(f"Results saved to: {self.results_dir}")
        logger.info("="*60)

        self._generate_summary_report()

        return self.de_results

    def _generate_summary_report(self):
        """Generate a summary report of the analysis."""
        summary = {
            'project': self.config['project']['name'],
            'date': datetime.now().isoformat(),
            'data': {
                'raw_features': self.expression_raw.shape[0] if self.expression_raw is not None else None,
                'analysed_features': self.de.expression.shape[0] if self.de is not None else None,
                'samples': self.de.expression.shape[1] if self.de is not None else None,
                'group_sizes': self.de.design.sum(axis=0).astype(int).to_dict() if self.de is not None else None,
            },
            'de_analysis': {
                name: {
                    'significant': len(sig),
                    'prior_df': self.de_results[name].prior_df,
                    'prior_var': self.de_results[name].prior_var,
                }
                for name, sig in (self.significant or {}).items()
            },
            'enrichment': {
                name: int((df['padj'] < 0.05).sum())
                for name, df in (self.enrichment_results or {}).items()
            },
        }

        with open(self.results_dir / "pipeline_summary.json", 'w') as f:
            json.dump(summary, f, indent=2, default=str)


def _slug(name: str) -> str:
    return ''.join(c if c.isalnum() else '_' for c in name).strip('_')


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Colorectal microarray DE pipeline')
    parser.add_argument(
        '--config',
        type=str,
        default='configs/config.yaml',
        help='Path to configuration file'
    )
    parser.add_argument(
        '--step',
        type=str,
        choices=['all', 'load', 'preprocess', 'explore', 'de', 'enrichment'],
        default='all',
        help='Pipeline step to run'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level'
    )

    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT, force=True)

    try:
        pipeline = ExpressionPipeline(args.config)

        if args.step == 'all':
            pipeline.run_full_pipeline()
        elif args.step == 'load':
            pipeline.step1_load_data()
        elif args.step == 'preprocess':
            pipeline.step2_preprocess()
        elif args.step == 'explore':
            pipeline.step3_explore()
        elif args.step == 'de':
            pipeline.step4_differential_expression()
        elif args.step == 'enrichment':
            pipeline.step5_enrichment()
    except DEAnalysisError as e:
        logger.error(f"Analysis aborted: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
