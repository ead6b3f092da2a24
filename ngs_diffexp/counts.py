"""
Count matrix loading for featureCounts output.

featureCounts writes a one-line command header followed by a table whose
first six columns describe the counted intervals (Geneid, Chr, Start, End,
Strand, Length) and whose remaining columns hold one read count per sample.
Sample columns are named after the BAM files they were counted from.
"""

import logging
from pathlib import Path
from typing import List, NamedTuple, Union
import pandas as pd

from .utils import validate_file_exists

logger = logging.getLogger(__name__)

INTERVAL_COLUMNS = ['Geneid', 'Chr', 'Start', 'End', 'Strand', 'Length']
N_INTERVAL_COLUMNS = len(INTERVAL_COLUMNS)
ID_COLUMN = 'Geneid'

class CountData(NamedTuple):
    """Interval annotation and counts, both indexed by interval ID."""
    intervals: pd.DataFrame
    counts: pd.DataFrame

def clean_sample_name(column: str, bam_suffix: str) -> str:
    """
    Turn a featureCounts column header into a sample name.

    Args:
        column: Column header, usually a BAM path
        bam_suffix: Part of the file name after the sample name, e.g. '.rmDup.bam'

    Returns:
        Sample name, e.g. 'DRUG_R1' for '/data/DRUG_R1.rmDup.bam'
    """
    name = column.replace(bam_suffix, '') if bam_suffix else column
    name = name.rsplit('/', 1)[-1]
    return name.split('.')[-1]

def read_featurecounts(featurecount_file: Union[str, Path], bam_suffix: str) -> CountData:
    """
    Parse an annotated featureCounts table.

    Args:
        featurecount_file: Path to featureCounts output
        bam_suffix: Suffix to strip from sample column headers

    Returns:
        CountData with the interval table and a gene x sample count matrix

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the table is malformed
    """
    path = validate_file_exists(featurecount_file)
    logger.info(f"Reading count table {path}")

    df = pd.read_csv(path, sep='\t', skiprows=1)

    if df.shape[1] <= N_INTERVAL_COLUMNS:
        raise ValueError(
            f"Expected {N_INTERVAL_COLUMNS} interval columns followed by sample counts, "
            f"found {df.shape[1]} columns in {path}"
        )
    if list(df.columns[:N_INTERVAL_COLUMNS]) != INTERVAL_COLUMNS:
        raise ValueError(
            f"Expected interval columns {INTERVAL_COLUMNS}, "
            f"found {list(df.columns[:N_INTERVAL_COLUMNS])} in {path}"
        )

    sample_columns = [clean_sample_name(str(c), bam_suffix) for c in df.columns[N_INTERVAL_COLUMNS:]]
    if len(set(sample_columns)) != len(sample_columns):
        raise ValueError(f"Sample names are not unique after cleaning: {sample_columns}")
    df.columns = list(df.columns[:N_INTERVAL_COLUMNS]) + sample_columns

    ids = df.iloc[:, 0].astype(str)
    duplicated = ids[ids.duplicated()].unique()
    if len(duplicated) > 0:
        raise ValueError(f"Duplicate interval IDs in {path}: {list(duplicated[:5])}")
    df.index = pd.Index(ids.values)

    intervals = df.iloc[:, :N_INTERVAL_COLUMNS].copy()
    counts = df.iloc[:, N_INTERVAL_COLUMNS:]

    non_numeric = [c for c in counts.columns if not pd.api.types.is_numeric_dtype(counts[c])]
    if non_numeric:
        raise ValueError(f"Non-numeric count columns: {non_numeric}")
    if (counts < 0).any().any():
        raise ValueError("Count table contains negative values")

    logger.info(f"Loaded {counts.shape[0]} intervals x {counts.shape[1]} samples")
    return CountData(intervals=intervals, counts=counts.copy())

def derive_groups(samples: List[str], suffix_length: int = 3) -> List[str]:
    """
    Derive group labels by trimming the replicate suffix from sample names.

    Args:
        samples: Sample names, e.g. ['DRUG_R1', 'DRUG_R2']
        suffix_length: Number of trailing characters identifying the replicate

    Returns:
        Group label per sample, e.g. ['DRUG', 'DRUG']

    Raises:
        ValueError: If a sample name is too short to carry a group label
    """
    groups = []
    for sample in samples:
        if len(sample) <= suffix_length:
            raise ValueError(
                f"Sample name '{sample}' is too short to remove a {suffix_length}-character replicate suffix"
            )
        groups.append(sample[:len(sample) - suffix_length])
    return groups

def unique_groups(groups: List[str]) -> List[str]:
    """Distinct groups in order of first appearance."""
    return list(dict.fromkeys(groups))

def build_sample_table(samples: List[str], suffix_length: int = 3) -> pd.DataFrame:
    """
    Build the per-sample design table used for modeling.

    Args:
        samples: Sample names in any order
        suffix_length: Replicate suffix length

    Returns:
        DataFrame indexed by sorted sample name with a 'condition' column
    """
    samples = sorted(samples)
    table = pd.DataFrame(
        {'condition': derive_groups(samples, suffix_length)},
        index=pd.Index(samples, name='sample')
    )
    logger.debug(f"Sample groups: {table['condition'].to_dict()}")
    return table
