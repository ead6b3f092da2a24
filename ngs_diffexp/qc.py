"""
Quality control plots for the differential expression pipeline.

This module provides sample-level diagnostics computed from the
variance-stabilized matrix: principal component analysis and hierarchically
clustered sample-to-sample distance heatmaps.
"""

import csv
import logging
from pathlib import Path
from typing import Dict, Any, Optional
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from matplotlib.backends.backend_pdf import PdfPages
from scipy.cluster.hierarchy import linkage
from scipy.spatial.distance import pdist, squareform
from sklearn.decomposition import PCA

from .model import sample_conditions, vst_counts
from .utils import output_exists, write_table

logger = logging.getLogger(__name__)

def compute_pca(
    vst: pd.DataFrame,
    conditions: pd.Series,
    n_top: int = 500
) -> pd.DataFrame:
    """
    Run PCA on the most variable genes.

    Genes are ranked by variance across samples and the top `n_top` are
    projected (centered, not scaled).

    Args:
        vst: Gene x sample variance-stabilized matrix
        conditions: Group label per sample
        n_top: Number of most variable genes to use

    Returns:
        Sample-indexed DataFrame with PC1, PC2 and condition; the percent
        variance explained by each component is in df.attrs['percent_var']
    """
    if vst.shape[1] < 2:
        raise ValueError("PCA needs at least two samples")

    variances = vst.var(axis=1, ddof=1)
    top_genes = variances.sort_values(ascending=False).index[:min(n_top, len(variances))]
    data = vst.loc[top_genes].T

    pca = PCA()
    coords = pca.fit_transform(data.values)
    percent_var = [float(v) for v in pca.explained_variance_ratio_]

    # A degenerate two-sample projection can yield a single component.
    if coords.shape[1] < 2:
        coords = np.column_stack([coords[:, 0], np.zeros(coords.shape[0])])
        percent_var = percent_var + [0.0]

    pca_df = pd.DataFrame(
        {'PC1': coords[:, 0], 'PC2': coords[:, 1]},
        index=data.index
    )
    pca_df['condition'] = conditions.reindex(pca_df.index).values
    pca_df.attrs['percent_var'] = percent_var[:2]

    logger.debug(f"PCA variance explained: {percent_var[:2]}")
    return pca_df

def percent_labels(pca_df: pd.DataFrame) -> Dict[str, str]:
    """Axis labels such as 'PC1: 45% variance'."""
    percent = [int(round(100 * v)) for v in pca_df.attrs['percent_var']]
    return {
        'PC1': f"PC1: {percent[0]}% variance",
        'PC2': f"PC2: {percent[1]}% variance",
    }

def write_pca_values(pca_df: pd.DataFrame, output_file: Path) -> None:
    """Write PC1/PC2 coordinates per sample."""
    labels = percent_labels(pca_df)
    table = pca_df[['PC1', 'PC2']].rename(columns=labels)
    table.insert(0, 'sample', table.index)
    write_table(table, output_file, quoting=csv.QUOTE_NONNUMERIC)

def sample_distances(vst: pd.DataFrame) -> pd.DataFrame:
    """
    Euclidean distances between samples.

    Args:
        vst: Gene x sample variance-stabilized matrix

    Returns:
        Square sample x sample DataFrame
    """
    dists = squareform(pdist(vst.T.values, metric='euclidean'))
    return pd.DataFrame(dists, index=vst.columns, columns=vst.columns)

def write_sample_distances(dist_df: pd.DataFrame, output_file: Path) -> None:
    """Write the distance matrix with a leading sample column."""
    table = dist_df.copy()
    table.insert(0, 'sample', table.index)
    write_table(table, output_file)

def plot_pca(pca_df: pd.DataFrame, pdf: Optional[PdfPages] = None) -> plt.Figure:
    """
    Scatter PC1 against PC2 colored by group.

    Args:
        pca_df: Output of compute_pca
        pdf: Optional open PDF to append the page to

    Returns:
        The figure (closed after saving when pdf is given)
    """
    labels = percent_labels(pca_df)
    fig, ax = plt.subplots(figsize=(7, 7))
    sns.scatterplot(data=pca_df, x='PC1', y='PC2', hue='condition', s=60, ax=ax)
    ax.set_xlabel(labels['PC1'])
    ax.set_ylabel(labels['PC2'])
    ax.grid(False)
    for spine in ax.spines.values():
        spine.set_visible(True)
        spine.set_color('black')
    fig.tight_layout()

    if pdf is not None:
        pdf.savefig(fig)
        plt.close(fig)
    return fig

def plot_distance_heatmap(
    dist_df: pd.DataFrame,
    pdf: Optional[PdfPages] = None,
    title: Optional[str] = None
):
    """
    Hierarchically clustered heatmap of sample distances.

    Args:
        dist_df: Square sample distance matrix
        pdf: Optional open PDF to append the page to
        title: Optional figure title

    Returns:
        seaborn ClusterGrid
    """
    cmap = sns.color_palette('Blues_r', 255, as_cmap=True)
    condensed = squareform(dist_df.values, checks=False)

    if len(dist_df) > 2:
        link = linkage(condensed, method='complete')
        grid = sns.clustermap(
            dist_df, row_linkage=link, col_linkage=link,
            cmap=cmap, figsize=(7, 7)
        )
    else:
        # Clustering two leaves is trivial; plot the matrix as is.
        grid = sns.clustermap(
            dist_df, row_cluster=False, col_cluster=False,
            cmap=cmap, figsize=(7, 7)
        )
    if title:
        grid.fig.suptitle(title)

    if pdf is not None:
        pdf.savefig(grid.fig)
        plt.close(grid.fig)
    return grid

def run_global_qc(
    dds,
    outdir: Path,
    outprefix: str,
    n_top: int = 500
) -> Dict[str, Any]:
    """
    Write PCA and sample distance diagnostics for all samples.

    Args:
        dds: Fitted DeseqDataSet with a VST layer
        outdir: Output directory
        outprefix: Output file prefix
        n_top: Number of most variable genes used for PCA

    Returns:
        Dictionary of written files (empty when skipped)
    """
    plot_file = outdir / f"{outprefix}.plots.pdf"
    if output_exists(plot_file, "global QC plots"):
        return {}

    logger.info("Generating global QC plots")
    vst = vst_counts(dds)
    conditions = sample_conditions(dds)

    pca_file = outdir / f"{outprefix}.pca.vals.txt"
    dist_file = outdir / f"{outprefix}.sample.dists.txt"

    with PdfPages(plot_file) as pdf:
        pca_df = compute_pca(vst, conditions, n_top=n_top)
        plot_pca(pca_df, pdf=pdf)
        write_pca_values(pca_df, pca_file)

        dist_df = sample_distances(vst)
        plot_distance_heatmap(dist_df, pdf=pdf)
        write_sample_distances(dist_df, dist_file)

    logger.info(f"QC plots saved to {plot_file}")
    return {'plots': plot_file, 'pca_values': pca_file, 'sample_distances': dist_file}
