"""Shared fixtures for the ngs_diffexp test suite."""

import matplotlib
matplotlib.use("Agg")

from pathlib import Path
from typing import Dict

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from generate_test_data import CountTableGenerator, create_featurecounts_file


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


def make_fitted_dataset(groups: Dict[str, int], n_genes: int = 60, seed: int = 0) -> ad.AnnData:
    """
    Build an AnnData shaped like a fitted DeseqDataSet.

    Carries the fields the pipeline reads: X, obs['condition'],
    obs['size_factors'], layers['normed_counts'] and layers['vst_counts'].
    """
    rng = np.random.default_rng(seed)
    samples = sorted(f"{g}_R{r}" for g, n in groups.items() for r in range(1, n + 1))
    conditions = [s[:-3] for s in samples]
    genes = [f"GENE{i:04d}" for i in range(n_genes)]

    counts = rng.poisson(100, size=(len(samples), n_genes)).astype(float)
    size_factors = rng.uniform(0.8, 1.2, size=len(samples))

    adata = ad.AnnData(
        X=counts,
        obs=pd.DataFrame({'condition': conditions}, index=samples),
        var=pd.DataFrame(index=genes),
    )
    adata.obs['size_factors'] = size_factors
    adata.layers['normed_counts'] = counts / size_factors[:, None]
    adata.layers['vst_counts'] = np.log2(adata.layers['normed_counts'] + 1)
    return adata


def fake_results(genes, seed: int = 0) -> pd.DataFrame:
    """Contrast results with a known mix of significant and missing values."""
    rng = np.random.default_rng(seed)
    n = len(genes)
    lfc = rng.normal(0, 1.5, size=n)
    padj = rng.uniform(0, 1, size=n)
    padj[:5] = 0.001
    lfc[:5] = [3.0, -3.0, 0.5, -0.5, 2.0]
    padj[5] = np.nan
    return pd.DataFrame({
        'baseMean': rng.uniform(10, 1000, size=n),
        'log2FoldChange': lfc,
        'lfcSE': np.full(n, 0.3),
        'stat': lfc / 0.3,
        'pvalue': padj / 2,
        'padj': padj,
    }, index=pd.Index(genes))


@pytest.fixture
def fitted_dataset():
    return make_fitted_dataset({'CTRL': 2, 'DRUG': 2})


@pytest.fixture
def featurecounts_file(tmp_path) -> Path:
    return create_featurecounts_file(tmp_path, {'CTRL': 3, 'DRUG': 3}, n_genes=60)


@pytest.fixture
def count_generator() -> CountTableGenerator:
    return CountTableGenerator(n_genes=60, seed=7)
