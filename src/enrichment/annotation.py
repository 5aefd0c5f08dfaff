"""
Probe Annotation
================

Maps array probe identifiers to gene symbols and Entrez IDs using a GEO
platform (GPL) annotation table.
"""

import pandas as pd
from pathlib import Path
from typing import Iterable
import logging

from de_analysis.contrasts import ContrastResult

logger = logging.getLogger(__name__)

MULTI_SEPARATOR = '///'


def _first_id(value) -> str:
    if pd.isna(value):
        return ''
    return str(value).split(MULTI_SEPARATOR)[0].strip()


class ProbeAnnotation:
    """Probe -> symbol / Entrez lookup."""

    def __init__(
        self,
        table: pd.DataFrame,
        probe_col: str = 'ID',
        symbol_col: str = 'Gene Symbol',
        entrez_col: str = 'ENTREZ_GENE_ID'
    ):
        missing = [c for c in (probe_col, symbol_col, entrez_col) if c not in table.columns]
        if missing:
            raise KeyError(f"Annotation table lacks columns: {missing}")

        annot = pd.DataFrame({
            'symbol': table[symbol_col].map(_first_id).values,
            'entrez': table[entrez_col].map(_first_id).values,
        }, index=table[probe_col].astype(str).values)
        annot = annot[~annot.index.duplicated(keep='first')]
        annot = annot.replace('', pd.NA)
        self.table = annot

        logger.info(
            f"Annotation: {len(annot)} probes, "
            f"{annot['symbol'].notna().sum()} with symbols, "
            f"{annot['entrez'].notna().sum()} with Entrez IDs"
        )

    @classmethod
    def from_file(cls, path: str, **kwargs) -> 'ProbeAnnotation':
        """Read a platform table (tab-separated, ``#`` comment lines skipped)."""
        path = Path(path)
        sep = ',' if path.suffix == '.csv' else '\t'
        table = pd.read_csv(path, sep=sep, comment='#', dtype=str)
        return cls(table, **kwargs)

    def map_features(self, features: Iterable[str], to: str = 'symbol') -> pd.Series:
        """
        Map feature ids; unmapped features are dropped.

        Returns
        -------
        pd.Series
            Mapped ids indexed by the original feature id, input order kept
        """
        if to not in ('symbol', 'entrez'):
            raise ValueError(f"Unknown identifier type: {to}")
        features = [str(f) for f in features]
        mapped = self.table[to].reindex(features).dropna()
        return mapped

    def map_unique(self, features: Iterable[str], to: str = 'symbol') -> list:
        """Distinct mapped ids in first-seen order."""
        return list(dict.fromkeys(self.map_features(features, to).tolist()))

    def annotate(self, result: ContrastResult) -> pd.DataFrame:
        """Contrast table with symbol and entrez columns added."""
        table = result.table
        table['symbol'] = self.table['symbol'].reindex(table.index.astype(str)).values
        table['entrez'] = self.table['entrez'].reindex(table.index.astype(str)).values
        return table
