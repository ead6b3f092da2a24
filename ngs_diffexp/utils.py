"""
Utility functions for the differential expression pipeline.

This module provides common utility functions used across the pipeline,
including logging setup, file validation and table writing helpers.
"""

import logging
from pathlib import Path
from typing import Optional, Union, List, Dict
import pandas as pd
from rich.logging import RichHandler

logger = logging.getLogger(__name__)

NA_REP = "NA"

def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Union[str, Path]] = None
) -> logging.Logger:
    """
    Set up logging with Rich handler for colored output.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional file that receives a plain-text copy of the log

    Returns:
        The package logger
    """
    handlers: List[logging.Handler] = [RichHandler(rich_tracebacks=True)]
    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True
    )
    return logging.getLogger("ngs_diffexp")

def validate_file_exists(file_path: Union[str, Path]) -> Path:
    """
    Validate that a file exists and return Path object.

    Args:
        file_path: Path to file

    Returns:
        Path object if file exists

    Raises:
        FileNotFoundError: If file doesn't exist
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return path

def validate_directory_exists(dir_path: Union[str, Path], create: bool = False) -> Path:
    """
    Validate that a directory exists, optionally create it.

    Args:
        dir_path: Path to directory
        create: Whether to create directory if it doesn't exist

    Returns:
        Path object

    Raises:
        FileNotFoundError: If directory doesn't exist and create=False
    """
    path = Path(dir_path)
    if not path.exists():
        if create:
            path.mkdir(parents=True, exist_ok=True)
        else:
            raise FileNotFoundError(f"Directory not found: {path}")
    return path

def output_exists(path: Path, stage: str) -> bool:
    """Return True (and say so) when a stage's artifact is already on disk."""
    if path.exists():
        logger.info(f"Skipping {stage}: {path} already exists")
        return True
    return False

def write_table(
    df: pd.DataFrame,
    output_file: Union[str, Path],
    header: bool = True,
    **kwargs
) -> None:
    """
    Write a tab-delimited table without row names.

    Missing values are written as NA so tables stay compatible with R tooling.

    Args:
        df: Table to write
        output_file: Output path
        header: Whether to write the column header
    """
    df.to_csv(output_file, sep='\t', index=False, header=header, na_rep=NA_REP, **kwargs)

def format_threshold(value: float) -> str:
    """Format a threshold for use in file names (0.05 -> '0.05', 2.0 -> '2')."""
    return f"{value:g}"

def create_output_dirs(base_dir: Path, subdirs: List[str]) -> Dict[str, Path]:
    """
    Create output directory structure.

    Args:
        base_dir: Base output directory
        subdirs: List of subdirectory names

    Returns:
        Dictionary mapping subdir names to Path objects
    """
    dirs = {}

    for subdir in subdirs:
        dir_path = base_dir / subdir
        dir_path.mkdir(parents=True, exist_ok=True)
        dirs[subdir] = dir_path

    return dirs
