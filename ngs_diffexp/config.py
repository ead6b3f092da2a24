"""
Run configuration for the differential expression pipeline.

Parameters come from three layers: built-in defaults, an optional YAML file,
and explicit command-line flags (highest priority).
"""

import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from .utils import validate_file_exists

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class DiffExpConfig:
    """All parameters of a single pipeline run."""

    featurecount_file: Optional[Path] = None
    bam_suffix: Optional[str] = None
    outdir: Path = Path("./")
    outprefix: str = "differential"
    outsuffix: str = ""

    # Sample names end in e.g. "_R1"; this many characters are trimmed to get the group.
    replicate_suffix_length: int = 3

    fdr_thresholds: Tuple[float, ...] = (0.01, 0.05)
    min_abs_log2fc: float = 1.0
    alpha: float = 0.1
    n_top_genes: int = 500
    n_cpus: int = 1
    ma_ylim: float = 2.0

    @property
    def model_file(self) -> Path:
        return self.outdir / f"{self.outprefix}.dds.pkl"

    @property
    def plot_file(self) -> Path:
        return self.outdir / f"{self.outprefix}.plots.pdf"

    @property
    def log_file(self) -> Path:
        return self.outdir / f"{self.outprefix}.log"

    @property
    def results_file(self) -> Path:
        return self.outdir / f"{self.outprefix}.results.txt"

    @property
    def session_file(self) -> Path:
        return self.outdir / "session_info.log"

    def validate(self) -> "DiffExpConfig":
        """
        Check that required fields are present and values are in range.

        Returns:
            self, for chaining

        Raises:
            ValueError: If a parameter is missing or invalid
        """
        if self.featurecount_file is None:
            raise ValueError("Please provide featurecount file.")
        if self.bam_suffix is None:
            raise ValueError("Please provide bam suffix in header of featurecount file.")
        if self.replicate_suffix_length < 0:
            raise ValueError("replicate_suffix_length must be >= 0")
        if not self.fdr_thresholds:
            raise ValueError("At least one FDR threshold is required")
        for threshold in self.fdr_thresholds:
            if not 0 < threshold <= 1:
                raise ValueError(f"FDR threshold out of range (0, 1]: {threshold}")
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha out of range (0, 1): {self.alpha}")
        if self.min_abs_log2fc < 0:
            raise ValueError("min_abs_log2fc must be >= 0")
        if self.n_top_genes < 2:
            raise ValueError("n_top_genes must be >= 2")
        if self.n_cpus < 1:
            raise ValueError("n_cpus must be >= 1")
        return self

    def with_overrides(self, **overrides: Any) -> "DiffExpConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **_coerce({k: v for k, v in overrides.items() if v is not None}))

_FIELD_NAMES = {f.name for f in fields(DiffExpConfig)}

def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    coerced = dict(values)
    for key in ("featurecount_file", "outdir"):
        if key in coerced and coerced[key] is not None:
            coerced[key] = Path(coerced[key])
    if "fdr_thresholds" in coerced:
        thresholds = coerced["fdr_thresholds"]
        if isinstance(thresholds, (int, float)):
            thresholds = [thresholds]
        coerced["fdr_thresholds"] = tuple(float(t) for t in thresholds)
    for key in ("min_abs_log2fc", "alpha", "ma_ylim"):
        if key in coerced:
            coerced[key] = float(coerced[key])
    for key in ("replicate_suffix_length", "n_top_genes", "n_cpus"):
        if key in coerced:
            coerced[key] = int(coerced[key])
    return coerced

def load_config(config_file: Optional[Union[str, Path]] = None) -> DiffExpConfig:
    """
    Load a run configuration from YAML.

    Args:
        config_file: Optional YAML file; defaults are used when omitted

    Returns:
        DiffExpConfig with the file's values applied

    Raises:
        ValueError: If the file is not a mapping or contains unknown keys
    """
    if config_file is None:
        return DiffExpConfig()

    path = validate_file_exists(config_file)
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Could not parse config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")

    unknown = sorted(set(data) - _FIELD_NAMES)
    if unknown:
        raise ValueError(f"Unknown config keys in {path}: {unknown}")

    logger.debug(f"Loaded {len(data)} config values from {path}")
    return replace(DiffExpConfig(), **_coerce(data))
