from __future__ import annotations

import logging
import subprocess
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple

import click
from dotenv import load_dotenv

from rnapath.config import (
    DEConfig,
    EnrichmentConfig,
    FilterConfig,
    PipelineConfig,
    RankingConfig,
)
from rnapath.counts import load_salmon_counts, read_tx2gene, write_count_matrix
from rnapath.pipeline import PipelineResult, run_enrichment, run_pipeline
from rnapath.report import ReportGenerator, read_contrast_table
from rnapath.salmon import build_index, quantify_replicate

logger = logging.getLogger(__name__)


@contextmanager
def _cli_errors() -> Iterator[None]:
    """Report input and tool failures as a CLI error instead of a traceback."""
    try:
        yield
    except (ValueError, FileNotFoundError) as exc:
        raise click.ClickException(str(exc)) from exc
    except subprocess.CalledProcessError as exc:
        cmd = exc.cmd if isinstance(exc.cmd, str) else " ".join(str(c) for c in exc.cmd)
        raise click.ClickException(f"Command failed with exit code {exc.returncode}: {cmd}") from exc


def _parse_quant_dirs(values: Iterable[str]) -> dict:
    quant_dirs = {}
    for value in values:
        sample_id, sep, location = value.partition("=")
        if not sep or not sample_id or not location:
            raise click.BadParameter(f"expected SAMPLE=DIR, got {value!r}", param_hint="--quant")
        if sample_id in quant_dirs:
            raise click.BadParameter(f"sample {sample_id!r} given twice", param_hint="--quant")
        quant_dirs[sample_id] = location
    return quant_dirs


def _print_summary(result: PipelineResult, ranking: RankingConfig) -> None:
    generator = ReportGenerator(ranking, annotated_only=result.annotated)
    for name, contrast in result.contrasts.items():
        click.echo(generator.to_console_summary(contrast, gsea=result.gsea.get(name)))


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
def cli(verbose: bool) -> None:
    """Differential expression and gene-set enrichment for RNA-seq experiments."""
    load_dotenv()
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


@cli.command("salmon-index")
@click.argument("transcripts_fa", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("genome_fa", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--index-dir",
    type=click.Path(path_type=Path),
    default=Path("salmon-index"),
    show_default=True,
    help="Directory for the Salmon index.",
)
@click.option("--threads", type=click.IntRange(1), default=12, show_default=True)
@click.option(
    "--gencode/--no-gencode",
    default=True,
    show_default=True,
    help="Transcript FASTA uses GENCODE '|'-separated headers.",
)
def salmon_index_command(
    transcripts_fa: Path,
    genome_fa: Path,
    index_dir: Path,
    threads: int,
    gencode: bool,
) -> None:
    """Build a decoy-aware Salmon index from transcript and genome FASTA."""
    with _cli_errors():
        click.echo(f"Building Salmon index in {index_dir}...")
        build_index(transcripts_fa, genome_fa, index_dir, threads=threads, gencode=gencode)
    click.echo(f"Index written to {index_dir}")


@cli.command("salmon-quant")
@click.argument(
    "run_lists",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--index-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help="Salmon index built by 'salmon-index'.",
)
@click.option(
    "--work-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Parent directory for per-sample output folders.",
)
@click.option("--threads", type=click.IntRange(1), default=16, show_default=True)
@click.option("--gibbs-samples", type=click.IntRange(0), default=20, show_default=True)
@click.option("--keep-fastq", is_flag=True, help="Keep FASTQ files after quantification.")
def salmon_quant_command(
    run_lists: Tuple[Path, ...],
    index_dir: Path,
    work_dir: Path,
    threads: int,
    gibbs_samples: int,
    keep_fastq: bool,
) -> None:
    """Download SRA runs and quantify each replicate (one run-list file each)."""
    with _cli_errors():
        for run_list in run_lists:
            click.echo(f"Quantifying {run_list.name}...")
            quant_dir = quantify_replicate(
                run_list,
                index_dir,
                threads=threads,
                gibbs_samples=gibbs_samples,
                keep_fastq=keep_fastq,
                work_dir=work_dir,
            )
            click.echo(f"  {quant_dir / 'quant.sf'}")


@cli.command("counts")
@click.option(
    "--quant",
    "quants",
    multiple=True,
    required=True,
    help="Salmon output for one sample as SAMPLE=DIR (repeat for each sample).",
)
@click.option(
    "--tx2gene",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Transcript-to-gene TSV or GENCODE transcript FASTA.",
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("counts.tsv"),
    show_default=True,
)
def counts_command(quants: Tuple[str, ...], tx2gene: Path, output: Path) -> None:
    """Aggregate Salmon transcript estimates into a gene count matrix."""
    quant_dirs = _parse_quant_dirs(quants)
    with _cli_errors():
        counts = load_salmon_counts(quant_dirs, read_tx2gene(tx2gene))
        write_count_matrix(counts, output)
    click.echo(f"Wrote {counts.shape[0]:,} genes x {counts.shape[1]} samples to {output}")


@cli.command("de")
@click.option(
    "--counts",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Gene x sample count matrix (TSV).",
)
@click.option(
    "--samples",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Sample sheet with sample_id, condition and batch columns.",
)
@click.option("--reference", required=True, help="Control condition label.")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("results"),
    show_default=True,
)
@click.option("--min-count", type=click.IntRange(0), default=10, show_default=True)
@click.option("--min-samples", type=click.IntRange(0), default=2, show_default=True)
@click.option("--lfc-threshold", type=float, default=1.0, show_default=True)
@click.option("--padj-threshold", type=float, default=0.05, show_default=True)
@click.option("--shrink", is_flag=True, help="Add shrunk log2 fold changes.")
@click.option(
    "--rank-by",
    type=click.Choice(["mle", "shrunk"]),
    default="mle",
    show_default=True,
    help="Effect estimate used to order significant genes.",
)
@click.option("--n-cpus", type=click.IntRange(1), default=None)
@click.option("--no-annotate", is_flag=True, help="Skip HGNC symbol annotation.")
@click.option("--no-plots", is_flag=True, help="Skip HTML plots.")
def de_command(
    counts: Path,
    samples: Path,
    reference: str,
    output_dir: Path,
    min_count: int,
    min_samples: int,
    lfc_threshold: float,
    padj_threshold: float,
    shrink: bool,
    rank_by: str,
    n_cpus: Optional[int],
    no_annotate: bool,
    no_plots: bool,
) -> None:
    """Fit the joint model and write one result table per contrast."""
    with _cli_errors():
        config = PipelineConfig(
            counts=str(counts),
            samples=str(samples),
            reference=reference,
            output_dir=str(output_dir),
            annotate=not no_annotate,
            plots=not no_plots,
            filter=FilterConfig(min_count=min_count, min_samples=min_samples),
            de=DEConfig(shrink=shrink, n_cpus=n_cpus),
            ranking=RankingConfig(
                lfc_threshold=lfc_threshold,
                padj_threshold=padj_threshold,
                effect_source=rank_by,
            ),
        )
        result = run_pipeline(config, progress=click.echo)
    _print_summary(result, config.ranking)
    click.echo(f"Wrote {len(result.outputs)} files to {output_dir}")


@cli.command("enrich")
@click.argument(
    "tables",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--gene-sets",
    "gene_sets",
    multiple=True,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="GMT file, optionally gzipped (repeat for multiple).",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("results"),
    show_default=True,
)
@click.option(
    "--metric",
    type=click.Choice(["signed_significance", "log2fc"]),
    default="signed_significance",
    show_default=True,
)
@click.option("--permutations", type=click.IntRange(1), default=1000, show_default=True)
@click.option("--seed", type=int, default=42, show_default=True)
@click.option("--min-size", type=click.IntRange(1), default=15, show_default=True)
@click.option("--max-size", type=click.IntRange(1), default=500, show_default=True)
@click.option("--threads", type=click.IntRange(1), default=4, show_default=True)
@click.option("--fdr-threshold", type=float, default=0.25, show_default=True)
def enrich_command(
    tables: Tuple[Path, ...],
    gene_sets: Tuple[Path, ...],
    output_dir: Path,
    metric: str,
    permutations: int,
    seed: int,
    min_size: int,
    max_size: int,
    threads: int,
    fdr_threshold: float,
) -> None:
    """Pre-ranked GSEA on contrast tables written by 'de'."""
    config = EnrichmentConfig(
        gene_sets=[str(p) for p in gene_sets],
        min_size=min_size,
        max_size=max_size,
        permutations=permutations,
        seed=seed,
        threads=threads,
        ranking_metric=metric,
        fdr_threshold=fdr_threshold,
    )
    generator = ReportGenerator()
    with _cli_errors():
        results = [read_contrast_table(p) for p in tables]
        gsea, _ = run_enrichment(results, config)
        for name, enriched in gsea.items():
            path = output_dir / f"{name}_gsea.tsv"
            n = generator.gsea_to_tsv(enriched, path, fdr_threshold=fdr_threshold)
            click.echo(
                f"{name}: {enriched.n_sets_tested} sets tested, "
                f"{n} with FDR < {fdr_threshold} -> {path}"
            )


@cli.command("run")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Override the configured output directory.",
)
def run_command(config_path: Path, output_dir: Optional[Path]) -> None:
    """Run the whole workflow from a JSON configuration file."""
    with _cli_errors():
        config = PipelineConfig.from_json(config_path)
        if output_dir is not None:
            config = replace(config, output_dir=str(output_dir))
        result = run_pipeline(config, progress=click.echo)
    _print_summary(result, config.ranking)

    click.echo("=" * 60)
    for key, value in result.get_stats().items():
        click.echo(f"  {key}: {value:,}")
    click.echo(f"  files written: {len(result.outputs)}")
    click.echo("=" * 60)


def main() -> None:  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
