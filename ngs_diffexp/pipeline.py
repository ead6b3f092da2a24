"""
End-to-end differential expression run.

Stages execute in a fixed order. Every stage checks for its output artifact
first and is skipped when it is already present, so an interrupted run can
be resumed by invoking it again with the same output directory and prefix.
"""

import logging
from typing import Any, Dict, Optional

from .compare import comparison_prefix, enumerate_comparisons, run_comparisons
from .config import DiffExpConfig
from .counts import build_sample_table, read_featurecounts, unique_groups
from .model import load_or_fit_model
from .qc import run_global_qc
from .session import write_run_log, write_session_info
from .size_factors import export_size_factors
from .utils import validate_directory_exists

logger = logging.getLogger(__name__)

def run_differential_analysis(config: DiffExpConfig) -> Optional[Dict[str, Any]]:
    """
    Run the full pipeline for one featureCounts table.

    Args:
        config: Validated run configuration

    Returns:
        Summary dictionary, or None when fewer than two groups are present
    """
    config.validate()

    count_data = read_featurecounts(config.featurecount_file, config.bam_suffix)
    validate_directory_exists(config.outdir, create=True)

    samples = build_sample_table(list(count_data.counts.columns), config.replicate_suffix_length)
    sample_names = list(samples.index)
    groups = list(samples['condition'])
    distinct = unique_groups(groups)
    logger.info(f"Groups: {', '.join(distinct)}")

    if len(distinct) < 2:
        logger.warning("Only one group found; nothing to compare")
        return None

    counts = count_data.counts[sample_names]
    dds = load_or_fit_model(config.model_file, counts, samples, n_cpus=config.n_cpus)

    qc_files = run_global_qc(dds, config.outdir, config.outprefix, n_top=config.n_top_genes)
    sf_files = export_size_factors(dds, config.outdir, config.outprefix, config.outsuffix)
    write_run_log(config.log_file, sample_names, groups, counts.shape)
    comparison_files = run_comparisons(dds, count_data.intervals, config)
    write_session_info(config.session_file)

    return {
        'samples': sample_names,
        'groups': distinct,
        'comparisons': [comparison_prefix(a, b) for a, b in enumerate_comparisons(groups)],
        'model_file': config.model_file,
        'qc': qc_files,
        'size_factors': sf_files,
        'results': comparison_files,
        'log_file': config.log_file,
    }
