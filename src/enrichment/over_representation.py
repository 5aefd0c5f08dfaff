"""
Over-Representation Analysis
============================

Fisher's exact test of a significant gene list against functional gene
sets (GO terms or any other collection), within a gene universe.

Gene sets are read from GMT files or from the JSON layout produced for
MSigDB collections (``{name: {"genes": [...], ...}}`` or ``{name: [...]}``).
"""

import json
import pandas as pd
import numpy as np
from pathlib import Path
from scipy import stats
from statsmodels.stats.multitest import multipletests
from typing import Dict, Iterable, List
import logging

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    'term', 'overlap', 'set_size', 'query_size', 'universe_size',
    'expected', 'odds_ratio', 'pvalue', 'padj', 'genes'
]


def load_gene_sets(path: str) -> Dict[str, List[str]]:
    """Load gene sets from a ``.gmt`` or ``.json`` file."""
    path = Path(path)
    gene_sets: Dict[str, List[str]] = {}

    if path.suffix == '.json':
        with open(path) as f:
            raw = json.load(f)
        for name, data in raw.items():
            genes = data.get('genes', []) if isinstance(data, dict) else data
            # Nested single-element lists come from R's toJSON
            genes = [g[0] if isinstance(g, list) else g for g in genes]
            gene_sets[name] = [str(g) for g in genes]
    else:
        with open(path) as f:
            for line in f:
                parts = line.rstrip('\n').split('\t')
                if len(parts) < 3:
                    continue
                gene_sets[parts[0]] = [g for g in parts[2:] if g]

    logger.info(f"Loaded {len(gene_sets)} gene sets from {path}")
    return gene_sets


class OverRepresentationAnalysis:
    """Fisher's exact over-representation test across gene sets."""

    def __init__(
        self,
        gene_sets: Dict[str, Iterable[str]],
        min_size: int = 10,
        max_size: int = 500
    ):
        self.gene_sets = {name: set(map(str, genes)) for name, genes in gene_sets.items()}
        self.min_size = min_size
        self.max_size = max_size

    def run(self, query: Iterable[str], universe: Iterable[str]) -> pd.DataFrame:
        """
        Test each gene set for over-representation of the query genes.

        Parameters
        ----------
        query : Iterable[str]
            Significant genes
        universe : Iterable[str]
            All genes that could have been selected

        Returns
        -------
        pd.DataFrame
            One row per tested set, sorted by p-value
        """
        universe = set(map(str, universe))
        query = set(map(str, query)) & universe
        N, n = len(universe), len(query)

        rows = []
        if n > 0:
            for term, genes in self.gene_sets.items():
                members = genes & universe
                K = len(members)
                if K < self.min_size or K > self.max_size:
                    continue
                hits = query & members
                k = len(hits)

                table = [[k, n - k], [K - k, N - K - n + k]]
                odds_ratio, pvalue = stats.fisher_exact(table, alternative='greater')

                rows.append({
                    'term': term,
                    'overlap': k,
                    'set_size': K,
                    'query_size': n,
                    'universe_size': N,
                    'expected': n * K / N,
                    'odds_ratio': odds_ratio,
                    'pvalue': pvalue,
                    'genes': ','.join(sorted(hits)),
                })

        if not rows:
            logger.info("No gene sets tested")
            return pd.DataFrame(columns=RESULT_COLUMNS)

        results = pd.DataFrame(rows)
        _, padj, _, _ = multipletests(results['pvalue'].values, method='fdr_bh')
        results['padj'] = padj
        results = results.sort_values(['pvalue', 'term'], kind='mergesort').reset_index(drop=True)

        logger.info(
            f"Tested {len(results)} gene sets, {int((results['padj'] < 0.05).sum())} with padj < 0.05"
        )
        return results[RESULT_COLUMNS]
