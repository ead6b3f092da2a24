"""
Run summary and software environment logs.
"""

import logging
import platform
import sys
from datetime import datetime
from importlib import metadata
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from . import __version__
from .utils import output_exists

logger = logging.getLogger(__name__)

SUMMARY_MARKER = ' genes with FDR <= '

REPORTED_PACKAGES = [
    'pydeseq2', 'anndata', 'numpy', 'pandas', 'scipy', 'scikit-learn',
    'matplotlib', 'seaborn', 'typer', 'rich', 'pyyaml',
]

def write_run_log(
    log_file: Path,
    samples: Sequence[str],
    groups: Sequence[str],
    shape: Tuple[int, int]
) -> bool:
    """
    Start the run log with samples, groups and count matrix dimensions.

    Args:
        log_file: Log path
        samples: Sample names in model order
        groups: Group label per sample
        shape: (n_genes, n_samples) of the count matrix

    Returns:
        True if the log was written, False if it already existed
    """
    if output_exists(log_file, "run log header"):
        return False

    with open(log_file, 'w') as f:
        f.write(f"\nSamples = {', '.join(samples)}\n\n")
        f.write(f"Groups = {', '.join(groups)}\n\n")
        f.write(f"Dimensions of count matrix = {shape[0]} {shape[1]}\n\n")
    return True

def format_comparison_summary(
    prefix: str,
    max_fdr: float,
    counts: Dict[str, int],
    min_fold_change: Optional[float] = None
) -> str:
    """
    One log line summarizing a filtered result set.

    Args:
        prefix: Comparison name, e.g. 'CTRLvsDRUG'
        max_fdr: FDR threshold
        counts: Dictionary with 'total', 'up' and 'down' counts
        min_fold_change: Linear fold-change cutoff, if one was applied

    Returns:
        e.g. 'CTRLvsDRUG genes with FDR <= 0.05 & FC > 2: 10 (up=6, down=4)'
    """
    label = f"{prefix} genes with FDR <= {max_fdr:g}"
    if min_fold_change is not None:
        label += f" & FC > {min_fold_change:g}"
    return f"{label}: {counts['total']} (up={counts['up']}, down={counts['down']})"

def append_log_lines(log_file: Path, lines: List[str]) -> None:
    """Append lines to the run log."""
    with open(log_file, 'a') as f:
        for line in lines:
            f.write(f"{line}\n")

def clear_comparison_summaries(log_file: Path) -> bool:
    """
    Drop comparison summary lines left in the run log by an earlier, unfinished run.

    Everything before the first summary line is kept.

    Returns:
        True if summary lines were removed
    """
    if not log_file.exists():
        return False

    lines = log_file.read_text().splitlines(keepends=True)
    for i, line in enumerate(lines):
        if SUMMARY_MARKER in line:
            logger.info(f"Removing {len(lines) - i} stale summary lines from {log_file}")
            log_file.write_text(''.join(lines[:i]))
            return True
    return False

def collect_package_versions(packages: Sequence[str] = REPORTED_PACKAGES) -> Dict[str, str]:
    """Installed versions of the analysis libraries."""
    versions = {}
    for package in packages:
        try:
            versions[package] = metadata.version(package)
        except metadata.PackageNotFoundError:
            versions[package] = 'not installed'
    return versions

def write_session_info(session_file: Path) -> bool:
    """
    Record the interpreter, platform and library versions used for the run.

    Returns:
        True if the file was written, False if it already existed
    """
    if output_exists(session_file, "session info"):
        return False

    with open(session_file, 'w') as f:
        f.write(f"ngs_diffexp {__version__}\n")
        f.write(f"Date: {datetime.now().isoformat(timespec='seconds')}\n")
        f.write(f"Python: {sys.version.split()[0]} ({platform.python_implementation()})\n")
        f.write(f"Platform: {platform.platform()}\n\n")
        f.write("Packages:\n")
        for package, version in collect_package_versions().items():
            f.write(f"  {package}: {version}\n")

    logger.debug(f"Session info written to {session_file}")
    return True
