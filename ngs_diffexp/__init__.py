"""
NGS differential expression pipeline.

Pairwise DESeq2 analysis of featureCounts matrices, built on PyDESeq2.
"""

__version__ = "1.0.0"
