"""
Pairwise differential expression comparisons.

For every unordered pair of groups this module requests a contrast from the
fitted model, joins it with interval annotation and counts, writes the full
and threshold-filtered tables plus BED region files, and draws per-comparison
diagnostic plots. A combined table across all comparisons is written last.
"""

import logging
from itertools import combinations
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from matplotlib.backends.backend_pdf import PdfPages

from .config import DiffExpConfig
from .counts import unique_groups
from .model import (
    contrast_results, normalized_counts, raw_counts,
    sample_conditions, vst_counts
)
from .qc import plot_distance_heatmap, sample_distances
from .session import append_log_lines, clear_comparison_summaries, format_comparison_summary
from .utils import (
    create_output_dirs, format_threshold, output_exists, write_table
)

logger = logging.getLogger(__name__)

BED_COLUMNS = ['Chr', 'Start', 'End', 'Geneid', 'log2FoldChange', 'Strand']

def enumerate_comparisons(groups: List[str]) -> List[Tuple[str, str]]:
    """
    All unordered pairs of distinct groups.

    Args:
        groups: Group label per sample (duplicates allowed)

    Returns:
        (first, second) pairs in combination order of first appearance
    """
    return list(combinations(unique_groups(groups), 2))

def comparison_prefix(first: str, second: str) -> str:
    """Name used for a comparison's directory and files."""
    return f"{first}vs{second}"

def filter_results(
    table: pd.DataFrame,
    max_fdr: float,
    min_abs_log2fc: Optional[float] = None,
    direction: Optional[str] = None
) -> pd.DataFrame:
    """
    Select significant rows.

    Args:
        table: Table with padj and log2FoldChange columns
        max_fdr: Keep rows with padj strictly below this value
        min_abs_log2fc: Optionally require |log2FoldChange| >= this value
        direction: Optionally 'up' (log2FoldChange > 0) or 'down' (< 0)

    Returns:
        Filtered copy; rows with missing padj never pass
    """
    mask = table['padj'] < max_fdr
    if min_abs_log2fc is not None:
        mask &= table['log2FoldChange'].abs() >= min_abs_log2fc
    if direction == 'up':
        mask &= table['log2FoldChange'] > 0
    elif direction == 'down':
        mask &= table['log2FoldChange'] < 0
    elif direction is not None:
        raise ValueError(f"direction must be 'up', 'down' or None, got {direction!r}")
    return table[mask.fillna(False)].copy()

def summarize_filter(
    table: pd.DataFrame,
    max_fdr: float,
    min_abs_log2fc: Optional[float] = None
) -> Dict[str, int]:
    """Counts of passing rows overall and by direction."""
    return {
        'total': len(filter_results(table, max_fdr, min_abs_log2fc)),
        'up': len(filter_results(table, max_fdr, min_abs_log2fc, direction='up')),
        'down': len(filter_results(table, max_fdr, min_abs_log2fc, direction='down')),
    }

def build_comparison_table(
    intervals: pd.DataFrame,
    results: pd.DataFrame,
    raw: pd.DataFrame,
    normalized: pd.DataFrame,
    samples: List[str]
) -> pd.DataFrame:
    """
    Join interval annotation, test statistics and counts of the compared samples.

    Args:
        intervals: Interval table indexed by interval ID
        results: Contrast results indexed by interval ID
        raw: Gene x sample raw counts
        normalized: Gene x sample normalized counts
        samples: Samples of the two compared groups

    Returns:
        Table in interval order
    """
    raw_part = raw.reindex(intervals.index)[samples]
    raw_part.columns = [f"{s}.raw" for s in samples]
    pseudo_part = normalized.reindex(intervals.index)[samples]
    pseudo_part.columns = [f"{s}.pseudo" for s in samples]

    return pd.concat(
        [intervals, results.reindex(intervals.index), raw_part, pseudo_part],
        axis=1
    )

def write_bed(table: pd.DataFrame, output_file: Path) -> None:
    """Write significant intervals as BED with the fold change in the score column."""
    write_table(table[BED_COLUMNS], output_file, header=False)

def plot_ma(
    results: pd.DataFrame,
    max_fdr: float,
    ylim: float = 2.0,
    pdf: Optional[PdfPages] = None
) -> plt.Figure:
    """
    MA plot: log fold change against mean normalized count.

    Points outside +/- ylim are drawn at the border as triangles.

    Args:
        results: Contrast results with baseMean, log2FoldChange and padj
        max_fdr: Genes with padj below this are highlighted
        ylim: Symmetric y-axis limit
        pdf: Optional open PDF to append the page to
    """
    data = results[results['baseMean'] > 0].dropna(subset=['log2FoldChange'])
    lfc = data['log2FoldChange'].clip(-ylim, ylim)
    clipped = data['log2FoldChange'].abs() > ylim
    significant = (data['padj'] < max_fdr).fillna(False)

    fig, ax = plt.subplots(figsize=(10, 8))
    for is_sig, color in [(False, 'grey'), (True, 'red')]:
        sel = significant == is_sig
        ax.scatter(data.loc[sel & ~clipped, 'baseMean'], lfc[sel & ~clipped],
                   s=4, c=color, alpha=0.6, linewidths=0)
        up = sel & clipped & (lfc > 0)
        down = sel & clipped & (lfc < 0)
        ax.scatter(data.loc[up, 'baseMean'], lfc[up], s=12, c=color, marker='^', linewidths=0)
        ax.scatter(data.loc[down, 'baseMean'], lfc[down], s=12, c=color, marker='v', linewidths=0)

    ax.axhline(0, color='black', linewidth=1)
    ax.set_xscale('log')
    ax.set_ylim(-ylim * 1.05, ylim * 1.05)
    ax.set_xlabel('mean of normalized counts')
    ax.set_ylabel('log fold change')
    ax.set_title(f"MA plot FDR <= {max_fdr:g}")
    fig.tight_layout()

    if pdf is not None:
        pdf.savefig(fig)
        plt.close(fig)
    return fig

def plot_volcano(
    table: pd.DataFrame,
    max_fdr: float,
    pdf: Optional[PdfPages] = None
) -> plt.Figure:
    """Volcano plot of -log10(FDR) against log fold change."""
    data = table.dropna(subset=['padj', 'log2FoldChange'])
    with np.errstate(divide='ignore'):
        neg_log_fdr = -np.log10(data['padj'])
    neg_log_fdr = neg_log_fdr.replace(np.inf, np.nan)
    colors = np.where(data['padj'] <= max_fdr, 'red', 'black')

    fig, ax = plt.subplots(figsize=(10, 8))
    ax.scatter(data['log2FoldChange'], neg_log_fdr, c=colors, s=6)
    ax.set_xlabel('logFC')
    ax.set_ylabel('-1*log10(FDR)')
    ax.set_title(f"Volcano plot FDR <= {max_fdr:g}")
    fig.tight_layout()

    if pdf is not None:
        pdf.savefig(fig)
        plt.close(fig)
    return fig

def plot_sample_scatter(
    vst: pd.DataFrame,
    pdf: Optional[PdfPages] = None
) -> plt.Figure:
    """
    Pairwise scatter plots of variance-stabilized expression.

    One panel per sample pair with the identity line in red.

    Args:
        vst: Gene x sample matrix restricted to the compared samples
        pdf: Optional open PDF to append the page to
    """
    pairs = list(combinations(vst.columns, 2))
    ncols = int(np.ceil(np.sqrt(len(pairs))))
    nrows = int(np.ceil(len(pairs) / ncols))

    fig, axes = plt.subplots(nrows, ncols, figsize=(3 * ncols + 1, 3 * nrows + 1), squeeze=False)
    lo = float(np.nanmin(vst.values))
    hi = float(np.nanmax(vst.values))
    for ax, (x, y) in zip(axes.flat, pairs):
        ax.scatter(vst[x], vst[y], s=2, c='steelblue', alpha=0.5, linewidths=0)
        ax.plot([lo, hi], [lo, hi], color='red', linewidth=1)
        ax.set_title(f"{x} & {y}", fontsize=6)
        ax.tick_params(labelsize=6)
    for ax in list(axes.flat)[len(pairs):]:
        ax.set_visible(False)
    fig.tight_layout()

    if pdf is not None:
        pdf.savefig(fig)
        plt.close(fig)
    return fig

def run_comparison(
    dds,
    intervals: pd.DataFrame,
    first: str,
    second: str,
    config: DiffExpConfig,
    raw: pd.DataFrame,
    normalized: pd.DataFrame,
    vst: pd.DataFrame
) -> pd.DataFrame:
    """
    Test, filter, write and plot one comparison.

    Args:
        dds: Fitted DeseqDataSet
        intervals: Interval table indexed by interval ID
        first: Numerator group
        second: Denominator group
        config: Run configuration
        raw: Gene x sample raw counts
        normalized: Gene x sample normalized counts
        vst: Gene x sample variance-stabilized matrix

    Returns:
        Contrast results (statistics only) indexed by interval ID
    """
    prefix = comparison_prefix(first, second)
    logger.info(f"Saving results for {prefix} ...")

    comp_dir = create_output_dirs(config.outdir, [prefix])[prefix]
    base = comp_dir / f"{prefix}{config.outsuffix}.deseq2"

    conditions = sample_conditions(dds)
    first_samples = [s for s in conditions.index if conditions[s] == first]
    second_samples = [s for s in conditions.index if conditions[s] == second]
    comp_samples = first_samples + second_samples

    results = contrast_results(dds, first, second, alpha=config.alpha)
    comp_table = build_comparison_table(intervals, results, raw, normalized, comp_samples)
    write_table(comp_table, f"{base}.results.txt")

    fold_change = 2 ** config.min_abs_log2fc
    with PdfPages(f"{base}.plots.pdf") as pdf:
        # Filtering and significance plots need replicates in at least one group.
        if len(comp_samples) > 2:
            log_lines = []
            for max_fdr in config.fdr_thresholds:
                fdr_tag = f"FDR{format_threshold(max_fdr)}"

                pass_fdr = filter_results(comp_table, max_fdr)
                write_table(pass_fdr, f"{base}.{fdr_tag}.results.txt")
                write_bed(pass_fdr, Path(f"{base}.{fdr_tag}.results.bed"))

                pass_fdr_fc = filter_results(comp_table, max_fdr, config.min_abs_log2fc)
                fc_tag = f"FC{format_threshold(fold_change)}"
                write_table(pass_fdr_fc, f"{base}.{fdr_tag}.{fc_tag}.results.txt")
                write_bed(pass_fdr_fc, Path(f"{base}.{fdr_tag}.{fc_tag}.results.bed"))

                plot_ma(results, max_fdr, ylim=config.ma_ylim, pdf=pdf)
                plot_volcano(comp_table, max_fdr, pdf=pdf)

                log_lines.append(format_comparison_summary(
                    prefix, max_fdr, summarize_filter(comp_table, max_fdr)))
                log_lines.append(format_comparison_summary(
                    prefix, max_fdr, summarize_filter(comp_table, max_fdr, config.min_abs_log2fc),
                    min_fold_change=fold_change))
            append_log_lines(config.log_file, log_lines + [""])
        else:
            logger.warning(f"{prefix}: only {len(comp_samples)} samples, skipping significance filtering")

        vst_subset = vst[comp_samples]
        plot_distance_heatmap(sample_distances(vst_subset), pdf=pdf, title=prefix)
        plot_sample_scatter(vst_subset, pdf=pdf)

    return results

def run_comparisons(
    dds,
    intervals: pd.DataFrame,
    config: DiffExpConfig
) -> Dict[str, Any]:
    """
    Run every pairwise comparison and write the combined results table.

    Skipped entirely when the combined table already exists.

    Args:
        dds: Fitted DeseqDataSet
        intervals: Interval table indexed by interval ID
        config: Run configuration

    Returns:
        Dictionary with the comparisons run and the combined table path
    """
    if output_exists(config.results_file, "pairwise comparisons"):
        return {}
    clear_comparison_summaries(config.log_file)

    raw = raw_counts(dds)
    normalized = normalized_counts(dds)
    vst = vst_counts(dds)
    comparisons = enumerate_comparisons(list(sample_conditions(dds)))
    logger.info(f"Running {len(comparisons)} pairwise comparisons")

    stats_tables = []
    for first, second in comparisons:
        results = run_comparison(dds, intervals, first, second, config, raw, normalized, vst)
        prefix = comparison_prefix(first, second)
        stats_tables.append(results.add_prefix(f"{prefix}."))

    raw_all = raw.reindex(intervals.index)
    raw_all.columns = [f"{s}.raw" for s in raw_all.columns]
    pseudo_all = normalized.reindex(intervals.index)
    pseudo_all.columns = [f"{s}.pseudo" for s in pseudo_all.columns]
    combined = pd.concat(
        [intervals] + [t.reindex(intervals.index) for t in stats_tables] + [raw_all, pseudo_all],
        axis=1
    )
    write_table(combined, config.results_file)
    logger.info(f"Combined results saved to {config.results_file}")

    return {
        'comparisons': [comparison_prefix(a, b) for a, b in comparisons],
        'results_file': config.results_file,
    }
