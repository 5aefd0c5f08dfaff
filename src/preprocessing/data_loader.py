"""
Microarray Data Loader and Sample Labelling
===========================================
Colorectal cancer expression series (Healthy / Adjacent / Tumor)

This module handles:
1. Parsing GEO series-matrix files (expression table + sample characteristics)
2. Loading plain expression / metadata tables
3. Labelling samples with a group from configurable keyword rules
4. Filtering and collapsing features before model fitting
"""

import gzip
import io
import re
import GEOparse
import pandas as pd
import numpy as np
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TABLE_BEGIN = '!series_matrix_table_begin'
TABLE_END = '!series_matrix_table_end'


def _open_text(path: Path):
    if path.suffix == '.gz':
        return gzip.open(path, 'rt', encoding='utf-8')
    return open(path, 'r', encoding='utf-8')


def _separator(path: Path) -> str:
    suffixes = [s for s in path.suffixes if s != '.gz']
    return ',' if suffixes and suffixes[-1] == '.csv' else '\t'


class ExpressionDataLoader:
    """Load expression data and sample metadata from GEO exports."""

    def __init__(
        self,
        expression_file: Optional[str] = None,
        metadata_file: Optional[str] = None,
        series_matrix_file: Optional[str] = None
    ):
        self.expression_file = Path(expression_file) if expression_file else None
        self.metadata_file = Path(metadata_file) if metadata_file else None
        self.series_matrix_file = Path(series_matrix_file) if series_matrix_file else None
        self.expression_df: Optional[pd.DataFrame] = None
        self.metadata_df: Optional[pd.DataFrame] = None

    def load(self) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """Load from the series matrix if given, else from the two tables."""
        if self.series_matrix_file is not None:
            return self.load_series_matrix()
        return self.load_expression(), self.load_metadata()

    def load_series_matrix(self) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Parse a GEO series-matrix file.

        ``!Sample_*`` lines become metadata columns (repeated keys such as
        ``!Sample_characteristics_ch1`` are numbered), and the block between
        the table markers becomes the expression matrix.

        Returns
        -------
        Tuple[pd.DataFrame, pd.DataFrame]
            Expression (features x samples) and metadata indexed by GSM id
        """
        if self.series_matrix_file is None:
            raise ValueError("No series matrix file configured")

        logger.info(f"Parsing series matrix {self.series_matrix_file}")

        sample_fields: Dict[str, List[str]] = {}
        key_counts: Dict[str, int] = {}
        table_lines: List[str] = []
        in_table = False

        with _open_text(self.series_matrix_file) as fh:
            for line in fh:
                line = line.rstrip('\n').rstrip('\r')
                if line.startswith(TABLE_BEGIN):
                    in_table = True
                    continue
                if line.startswith(TABLE_END):
                    in_table = False
                    continue
                if in_table:
                    table_lines.append(line)
                elif line.startswith('!Sample_'):
                    parts = line.split('\t')
                    key = parts[0][len('!Sample_'):]
                    values = [v.strip().strip('"') for v in parts[1:]]
                    key_counts[key] = key_counts.get(key, 0) + 1
                    if key_counts[key] > 1 or key == 'characteristics_ch1':
                        key = f"{key}_{key_counts[key]}"
                    sample_fields[key] = values

        if not table_lines:
            raise ValueError(f"No expression table in {self.series_matrix_file}")

        expression = pd.read_csv(
            io.StringIO('\n'.join(table_lines)),
            sep='\t',
            index_col=0
        )
        expression.index = expression.index.astype(str)
        expression.index.name = 'ID_REF'

        metadata = pd.DataFrame(sample_fields)
        if 'geo_accession' in metadata.columns:
            metadata = metadata.set_index('geo_accession')
        else:
            metadata.index = expression.columns
        metadata.index.name = 'sample_id'

        self.expression_df = expression
        self.metadata_df = metadata
        logger.info(
            f"Loaded {expression.shape[0]} features x {expression.shape[1]} samples, "
            f"{metadata.shape[1]} metadata fields"
        )
        return expression, metadata

    def load_expression(self) -> pd.DataFrame:
        """Load expression matrix (features x samples) from file."""
        if self.expression_file is None:
            raise ValueError("No expression file configured")
        logger.info(f"Loading expression from {self.expression_file}")

        self.expression_df = pd.read_csv(
            self.expression_file,
            sep=_separator(self.expression_file),
            index_col=0
        )
        self.expression_df.index = self.expression_df.index.astype(str)

        logger.info(
            f"Loaded {self.expression_df.shape[0]} features x "
            f"{self.expression_df.shape[1]} samples"
        )
        return self.expression_df

    def load_metadata(self) -> pd.DataFrame:
        """Load sample metadata indexed by the first column."""
        if self.metadata_file is None:
            raise ValueError("No metadata file configured")
        logger.info(f"Loading metadata from {self.metadata_file}")

        self.metadata_df = pd.read_csv(
            self.metadata_file,
            sep=_separator(self.metadata_file),
            index_col=0,
            dtype=str
        )
        self.metadata_df.index.name = 'sample_id'
        return self.metadata_df


def fetch_geo(accession: str, destdir: str = 'data/raw') -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Download a GEO series with GEOparse.

    Returns
    -------
    Tuple[pd.DataFrame, pd.DataFrame]
        Expression (VALUE column pivoted to features x samples) and the
        series phenotype table (GEOparse column names such as
        ``source_name_ch1`` and ``characteristics_ch1.0.tissue``)
    """
    Path(destdir).mkdir(parents=True, exist_ok=True)
    logger.info(f"Fetching {accession} into {destdir}")

    gse = GEOparse.get_GEO(geo=accession, destdir=destdir, silent=True)
    expression = gse.pivot_samples('VALUE')
    expression.index = expression.index.astype(str)
    metadata = gse.phenotype_data.copy()
    metadata.index.name = 'sample_id'

    logger.info(f"Fetched {expression.shape[0]} features x {expression.shape[1]} samples")
    return expression, metadata


def assign_groups(
    metadata: pd.DataFrame,
    rules: Sequence[Dict],
    source_cols: Optional[Sequence[str]] = None,
    group_col: str = 'group'
) -> pd.DataFrame:
    """
    Label samples by keyword rules on free-text metadata fields.

    Rules are tried in order and the first match wins. Each rule is a
    mapping with ``group``, ``keywords`` and optional ``exclude`` lists;
    matching is case-insensitive on whole words. Unmatched samples get NaN.

    Parameters
    ----------
    metadata : pd.DataFrame
        Sample metadata
    rules : Sequence[Dict]
        Ordered labelling rules
    source_cols : Sequence[str], optional
        Columns to search. Defaults to every ``title``, ``source_name`` and
        ``characteristics`` column present.
    group_col : str
        Name of the output column

    Returns
    -------
    pd.DataFrame
        Copy of ``metadata`` with the group column added
    """
    if source_cols is None:
        source_cols = [
            c for c in metadata.columns
            if c == 'title' or c.startswith('source_name') or c.startswith('characteristics')
        ]
    missing = [c for c in source_cols if c not in metadata.columns]
    if missing:
        raise KeyError(f"Metadata columns not found: {missing}")
    if not source_cols:
        raise ValueError("No metadata columns to match group rules against")

    text = (
        metadata[list(source_cols)]
        .fillna('')
        .astype(str)
        .agg(' '.join, axis=1)
        .str.lower()
    )

    def _pattern(words):
        return re.compile(r'\b(?:' + '|'.join(re.escape(w.lower()) for w in words) + r')\b')

    compiled = [
        (rule['group'], _pattern(rule['keywords']),
         _pattern(rule['exclude']) if rule.get('exclude') else None)
        for rule in rules
    ]

    labels = []
    for sample_text in text:
        label = np.nan
        for group, include, exclude in compiled:
            if include.search(sample_text) and not (exclude and exclude.search(sample_text)):
                label = group
                break
        labels.append(label)

    labelled = metadata.copy()
    labelled[group_col] = labels

    counts = labelled[group_col].value_counts(dropna=False)
    logger.info(f"Group assignment: {counts.to_dict()}")
    n_unmatched = int(labelled[group_col].isna().sum())
    if n_unmatched:
        logger.warning(f"{n_unmatched} samples matched no group rule")
    return labelled


def collapse_duplicate_features(expression: pd.DataFrame) -> pd.DataFrame:
    """Average rows sharing a feature identifier."""
    if not expression.index.has_duplicates:
        return expression
    n_before = expression.shape[0]
    collapsed = expression.groupby(level=0, sort=False).mean()
    logger.info(f"Collapsed duplicated features: {n_before} -> {collapsed.shape[0]}")
    return collapsed


def filter_low_expression(
    expression: pd.DataFrame,
    min_expr: float = 0.0,
    min_samples: int = 1
) -> pd.DataFrame:
    """
    Filter features with low expression.

    Keep features that have at least `min_expr` in at least `min_samples` samples.
    """
    n_before = expression.shape[0]

    keep = (expression >= min_expr).sum(axis=1) >= min_samples
    filtered = expression.loc[keep]

    n_after = filtered.shape[0]
    logger.info(f"Filtered features: {n_before} -> {n_after} "
                f"(removed {n_before - n_after})")
    return filtered
