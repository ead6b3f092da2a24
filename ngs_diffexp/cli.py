#!/usr/bin/env python3
"""
ngs_diffexp CLI

Command-line interface for pairwise differential expression analysis of
featureCounts tables with DESeq2 (PyDESeq2).

Sample names must end in a replicate suffix such as "_R1"; trimming it gives
the group used for comparisons.
"""

import typer
import sys
from pathlib import Path
from typing import Optional, List
from rich.console import Console
from rich.table import Table
import logging

from . import __version__
from .utils import setup_logging
from .config import load_config
from .counts import read_featurecounts, build_sample_table, unique_groups
from .compare import enumerate_comparisons, comparison_prefix
from .pipeline import run_differential_analysis

app = typer.Typer(
    name="ngs_diffexp",
    help="ngs_diffexp - Pairwise DESeq2 differential analysis of featureCounts tables",
    add_completion=False,
)

console = Console()
logger = logging.getLogger(__name__)

# Global options
def version_callback(value: bool):
    if value:
        console.print(f"ngs_diffexp v{__version__}")
        raise typer.Exit()

def verbose_callback(value: bool):
    if value:
        setup_logging(level=logging.DEBUG)
    else:
        setup_logging(level=logging.INFO)

@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
    verbose: bool = typer.Option(
        False, "--verbose",
        callback=verbose_callback,
        help="Enable verbose logging"
    ),
):
    """ngs_diffexp CLI"""
    pass

@app.command()
def run(
    featurecount_file: Path = typer.Option(
        ..., "--featurecount-file", "-i",
        help="Feature count file generated by the SubRead featureCounts command."
    ),
    bam_suffix: str = typer.Option(
        ..., "--bam-suffix", "-b",
        help="Portion of filename after sample name in featurecount file header e.g. '.rmDup.bam' if 'DRUG_R1.rmDup.bam'"
    ),
    outdir: Optional[Path] = typer.Option(None, "--outdir", "-o", help="Output directory [default: ./]"),
    outprefix: Optional[str] = typer.Option(None, "--outprefix", "-p", help="Output prefix [default: differential]"),
    outsuffix: Optional[str] = typer.Option(None, "--outsuffix", "-s", help="Output suffix for comparison-level results"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML file with run parameters"),
    fdr: Optional[List[float]] = typer.Option(None, "--fdr", help="FDR threshold, repeatable [default: 0.01, 0.05]"),
    min_log2fc: Optional[float] = typer.Option(None, "--min-log2fc", help="Minimum |log2FoldChange| [default: 1]"),
    n_cpus: Optional[int] = typer.Option(None, "--n-cpus", help="Worker processes for model fitting [default: 1]"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write the pipeline log to this file"),
):
    """Run DESeq2 on all pairwise group comparisons."""
    console.print("[bold blue]Running differential expression analysis[/bold blue]")

    if log_file is not None:
        setup_logging(level=logging.getLogger().level, log_file=log_file)

    try:
        config = load_config(config_file).with_overrides(
            featurecount_file=featurecount_file,
            bam_suffix=bam_suffix,
            outdir=outdir,
            outprefix=outprefix,
            outsuffix=outsuffix,
            fdr_thresholds=fdr or None,
            min_abs_log2fc=min_log2fc,
            n_cpus=n_cpus,
        )
        summary = run_differential_analysis(config)

    except Exception as e:
        logger.debug("Pipeline failed", exc_info=True)
        console.print(f"[bold red]Error in differential analysis: {e}[/bold red]")
        sys.exit(1)

    if summary is None:
        console.print("[yellow]Only one group found, no comparisons to run.[/yellow]")
        return

    console.print("[bold green]Differential analysis completed successfully![/bold green]")
    console.print(f"Comparisons: {', '.join(summary['comparisons'])}")
    console.print(f"Results saved to: {config.outdir}")

@app.command()
def groups(
    featurecount_file: Path = typer.Argument(..., help="Feature count file"),
    bam_suffix: str = typer.Option(..., "--bam-suffix", "-b", help="Portion of filename after sample name"),
    suffix_length: int = typer.Option(3, "--suffix-length", help="Replicate suffix length trimmed from sample names"),
):
    """Show the sample to group assignment and the comparisons it implies."""
    try:
        count_data = read_featurecounts(featurecount_file, bam_suffix)
        samples = build_sample_table(list(count_data.counts.columns), suffix_length)

    except Exception as e:
        logger.debug("Group preview failed", exc_info=True)
        console.print(f"[bold red]Could not derive groups: {e}[/bold red]")
        sys.exit(1)

    table = Table(title="Sample groups")
    table.add_column("Sample")
    table.add_column("Group")
    for sample, condition in samples['condition'].items():
        table.add_row(sample, condition)
    console.print(table)

    group_labels = list(samples['condition'])
    console.print(f"Found {len(unique_groups(group_labels))} groups")
    for first, second in enumerate_comparisons(group_labels):
        console.print(f"  {comparison_prefix(first, second)}")

if __name__ == "__main__":
    app()
