"""
Negative-binomial model fitting with PyDESeq2.

This module wraps DeseqDataSet/DeseqStats: fitting size factors, dispersions
and coefficients, the variance-stabilizing transform, per-contrast Wald tests
and caching of the fitted dataset on disk.
"""

import logging
import pickle
from pathlib import Path
from typing import Union
import numpy as np
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.ds import DeseqStats
from pydeseq2.default_inference import DefaultInference

logger = logging.getLogger(__name__)

DESIGN = "~condition"
FACTOR = "condition"
VST_LAYER = "vst_counts"

def _prepare_counts(counts: pd.DataFrame, samples: pd.DataFrame) -> pd.DataFrame:
    """Round to integers and orient samples x genes in sample-table order."""
    missing = [s for s in samples.index if s not in counts.columns]
    if missing:
        raise ValueError(f"Samples missing from count matrix: {missing}")
    ordered = counts.loc[:, list(samples.index)]
    return ordered.round().astype(int).T

def fit_model(
    counts: pd.DataFrame,
    samples: pd.DataFrame,
    n_cpus: int = 1
) -> DeseqDataSet:
    """
    Fit the DESeq2 model and the variance-stabilizing transform.

    Args:
        counts: Gene x sample count matrix
        samples: Sample table with a 'condition' column
        n_cpus: Worker processes used by PyDESeq2

    Returns:
        Fitted DeseqDataSet with the VST matrix in layers['vst_counts']
    """
    counts_t = _prepare_counts(counts, samples)
    metadata = samples.loc[counts_t.index, [FACTOR]]
    inference = DefaultInference(n_cpus=n_cpus)

    logger.info(f"Fitting DESeq2 model on {counts_t.shape[1]} genes x {counts_t.shape[0]} samples")
    dds = DeseqDataSet(
        counts=counts_t,
        metadata=metadata,
        design=DESIGN,
        refit_cooks=True,
        inference=inference,
        quiet=True
    )
    dds.deseq2()

    # Blind transform: dispersions fit against an intercept-only design on a
    # separate dataset so the fitted model above is left untouched.
    logger.info("Computing variance-stabilizing transform")
    vst_dds = DeseqDataSet(
        counts=counts_t,
        metadata=metadata,
        design=DESIGN,
        inference=inference,
        quiet=True
    )
    vst_dds.vst(use_design=False)
    dds.layers[VST_LAYER] = np.asarray(vst_dds.layers[VST_LAYER])

    return dds

def save_model(dds: DeseqDataSet, model_file: Union[str, Path]) -> None:
    """Pickle a fitted dataset."""
    with open(model_file, 'wb') as f:
        pickle.dump(dds, f)
    logger.info(f"Model saved to {model_file}")

def load_model(model_file: Union[str, Path]) -> DeseqDataSet:
    """Load a pickled dataset written by save_model."""
    with open(model_file, 'rb') as f:
        dds = pickle.load(f)
    logger.info(f"Loaded cached model from {model_file}")
    return dds

def load_or_fit_model(
    model_file: Path,
    counts: pd.DataFrame,
    samples: pd.DataFrame,
    n_cpus: int = 1
) -> DeseqDataSet:
    """
    Return the cached model if present, otherwise fit and cache it.

    Args:
        model_file: Pickle path used as cache
        counts: Gene x sample count matrix
        samples: Sample table with a 'condition' column
        n_cpus: Worker processes used by PyDESeq2

    Returns:
        Fitted DeseqDataSet
    """
    if model_file.exists():
        return load_model(model_file)

    dds = fit_model(counts, samples, n_cpus=n_cpus)
    save_model(dds, model_file)
    return dds

def _gene_by_sample(dds: DeseqDataSet, values) -> pd.DataFrame:
    return pd.DataFrame(
        np.asarray(values),
        index=dds.obs_names,
        columns=dds.var_names
    ).T

def raw_counts(dds: DeseqDataSet) -> pd.DataFrame:
    """Integer counts the model was fit on, gene x sample."""
    return _gene_by_sample(dds, dds.X)

def normalized_counts(dds: DeseqDataSet) -> pd.DataFrame:
    """Size-factor normalized counts, gene x sample."""
    return _gene_by_sample(dds, dds.layers['normed_counts'])

def vst_counts(dds: DeseqDataSet) -> pd.DataFrame:
    """Variance-stabilized expression, gene x sample."""
    return _gene_by_sample(dds, dds.layers[VST_LAYER])

def size_factors(dds: DeseqDataSet) -> pd.Series:
    """Per-sample size factors."""
    return pd.Series(np.asarray(dds.obs['size_factors']), index=dds.obs_names, name='sizeFactor')

def sample_conditions(dds: DeseqDataSet) -> pd.Series:
    """Group label per sample."""
    return dds.obs[FACTOR].astype(str)

def contrast_results(
    dds: DeseqDataSet,
    first: str,
    second: str,
    alpha: float = 0.1
) -> pd.DataFrame:
    """
    Wald test of one group against another.

    log2FoldChange is log2(first / second).

    Args:
        dds: Fitted dataset
        first: Numerator group
        second: Denominator group
        alpha: Significance level used for independent filtering

    Returns:
        Gene-indexed DataFrame with baseMean, log2FoldChange, lfcSE, stat, pvalue, padj
    """
    logger.debug(f"Testing contrast {first} vs {second}")
    stats = DeseqStats(
        dds,
        contrast=[FACTOR, first, second],
        alpha=alpha,
        cooks_filter=True,
        independent_filter=True,
        quiet=True
    )
    stats.summary()
    return stats.results_df.copy()
