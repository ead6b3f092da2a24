"""
Export of per-sample normalization factors.
"""

import logging
from pathlib import Path
from typing import Dict, Any

from .model import size_factors
from .utils import output_exists, validate_directory_exists, write_table

logger = logging.getLogger(__name__)

SIZE_FACTORS_DIR = "sizeFactors"

def export_size_factors(
    dds,
    outdir: Path,
    outprefix: str,
    outsuffix: str = ""
) -> Dict[str, Any]:
    """
    Write size factors for every sample.

    Produces sizeFactors/<outprefix>.sizeFactors.tsv with all samples and one
    sizeFactors/<sample><outsuffix>.sizeFactor.txt per sample holding a
    single number, the format consumed by downstream bigWig scaling.

    Args:
        dds: Fitted DeseqDataSet
        outdir: Output directory
        outprefix: Prefix of the combined table
        outsuffix: Suffix added to per-sample file names

    Returns:
        Dictionary with the table path and per-sample paths written
    """
    sf_dir = validate_directory_exists(outdir / SIZE_FACTORS_DIR, create=True)
    table_file = sf_dir / f"{outprefix}.sizeFactors.tsv"
    if output_exists(table_file, "size factor export"):
        return {}

    factors = size_factors(dds)
    table = factors.rename_axis('sample').reset_index()
    write_table(table, table_file)

    written = []
    for sample, value in factors.items():
        sample_file = sf_dir / f"{sample}{outsuffix}.sizeFactor.txt"
        if sample_file.exists():
            logger.debug(f"Size factor file exists, leaving it: {sample_file}")
            continue
        sample_file.write_text(f"{value:.7g}\n")
        written.append(sample_file)

    logger.info(f"Saved size factors for {len(factors)} samples to {sf_dir}")
    return {'table': table_file, 'sample_files': written}
