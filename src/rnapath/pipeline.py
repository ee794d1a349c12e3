"""
End-to-end workflow orchestrator.

Chains loading, filtering, the joint model fit, per-contrast extraction,
annotation, ranking, enrichment and output writing. Every stage raises on
invalid input; nothing is retried.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

from .annotation import GeneAnnotator, get_annotator
from .config import EnrichmentConfig, PipelineConfig
from .contrasts import ContrastEstimator, FittedModel
from .counts import (
    align_counts,
    filter_counts,
    load_count_matrix,
    load_salmon_counts,
    read_tx2gene,
    write_count_matrix,
)
from .de_result import ContrastResult, GeneResult, GseaResult, OraResult
from .enrichment import (
    GProfilerBackend,
    GseapyBackend,
    OverRepresentationAnalyzer,
    PrerankEnrichment,
)
from .gene_ranker import GeneRanker, ranking_metric
from .gene_sets import GeneSetCollection, load_gene_sets
from .plots import DiagnosticPlots
from .report import RANKED_SUFFIX, ReportGenerator
from .samples import SampleSheet, load_sample_sheet

logger = logging.getLogger(__name__)


class PipelineResult:
    """Container for pipeline results."""

    def __init__(self, sheet: SampleSheet, counts: pd.DataFrame, filtered: pd.DataFrame):
        self.sheet = sheet
        self.counts = counts
        self.filtered = filtered
        self.model: Optional[FittedModel] = None
        self.contrasts: Dict[str, ContrastResult] = {}
        self.ranked: Dict[str, List[GeneResult]] = {}
        self.gsea: Dict[str, GseaResult] = {}
        self.ora: Dict[str, OraResult] = {}
        self.outputs: List[Path] = []
        # True once annotation has matched at least one tested gene
        self.annotated = False

    def add_contrast(self, result: ContrastResult, ranked: List[GeneResult]):
        self.contrasts[result.name] = result
        self.ranked[result.name] = ranked

    def add_output(self, path: Path):
        self.outputs.append(Path(path))

    def get_stats(self) -> Dict[str, int]:
        stats = {
            "samples": len(self.sheet),
            "genes_loaded": self.counts.shape[0],
            "genes_filtered": self.filtered.shape[0],
        }
        for name, genes in self.ranked.items():
            stats[f"significant_{name}"] = len(genes)
        for name, gsea in self.gsea.items():
            stats[f"gene_sets_tested_{name}"] = gsea.n_sets_tested
        return stats


# =============================================================================
# Stages
# =============================================================================


def load_counts(config: PipelineConfig) -> pd.DataFrame:
    """Count matrix from a TSV, or aggregated from Salmon quantifications."""
    if config.counts:
        return load_count_matrix(config.counts)
    tx2gene = read_tx2gene(config.tx2gene)
    return load_salmon_counts(config.quant_dirs, tx2gene)


def prepare_counts(config: PipelineConfig) -> Tuple[SampleSheet, pd.DataFrame, pd.DataFrame]:
    """Load, align and filter counts.

    Returns:
        (sample sheet, aligned raw counts, filtered counts)
    """
    if not config.samples:
        raise ValueError("A sample sheet ('samples') is required")
    sheet = load_sample_sheet(config.samples, reference=config.reference)
    counts = align_counts(load_counts(config), sheet)
    filtered = filter_counts(
        counts,
        min_count=config.filter.min_count,
        min_samples=config.filter.min_samples,
    )
    return sheet, counts, filtered


def run_enrichment(
    results: List[ContrastResult],
    config: EnrichmentConfig,
    ranked: Optional[Dict[str, List[GeneResult]]] = None,
    effect_source: str = "mle",
) -> Tuple[Dict[str, GseaResult], Dict[str, OraResult]]:
    """
    GSEA (and optionally ORA) for each contrast against the configured gene sets.

    Args:
        results: Contrast results (annotated when gene sets use symbols)
        config: Enrichment configuration
        ranked: Significant genes per contrast name, needed for ORA
        effect_source: Effect estimate used by the ``log2fc`` metric

    Returns:
        (GSEA results, ORA results), keyed by contrast name
    """
    gsea: Dict[str, GseaResult] = {}
    ora: Dict[str, OraResult] = {}

    collection: Optional[GeneSetCollection] = None
    if config.gene_sets:
        collection = load_gene_sets(config.gene_sets)
        prerank = PrerankEnrichment(config)
        for result in results:
            ranking = ranking_metric(result, config.ranking_metric, effect_source)
            gsea[result.name] = prerank.run(ranking, collection, contrast=result.name)

    if config.run_ora and ranked is not None:
        if config.ora_backend == "gseapy":
            if collection is None:
                raise ValueError("Over-representation with the gseapy backend needs 'gene_sets'")
            backend = GseapyBackend(
                collection,
                threshold=config.ora_threshold,
                min_size=config.min_size,
                max_size=config.max_size,
            )
        else:
            backend = GProfilerBackend(
                organism=config.organism,
                sources=config.sources,
                threshold=config.ora_threshold,
            )
        analyzer = OverRepresentationAnalyzer(config, backend)
        for result in results:
            universe = [g.symbol or g.gene_id for g in result.genes]
            ora[result.name] = analyzer.analyze(result.name, ranked.get(result.name, []), universe)

    return gsea, ora


def write_outputs(result: PipelineResult, config: PipelineConfig) -> None:
    """Tables, JSON summary and (optionally) plots under ``config.output_dir``."""
    out = Path(config.output_dir)
    out.mkdir(parents=True, exist_ok=True)
    generator = ReportGenerator(config.ranking, annotated_only=result.annotated)

    path = out / "counts_filtered.tsv"
    write_count_matrix(result.filtered, path)
    result.add_output(path)

    for name, contrast in result.contrasts.items():
        path = out / f"{name}.tsv"
        generator.to_tsv(contrast, path)
        result.add_output(path)

        path = out / f"{name}{RANKED_SUFFIX}.tsv"
        generator.to_tsv(contrast, path, ranked=True)
        result.add_output(path)

        if name in result.gsea:
            path = out / f"{name}_gsea.tsv"
            generator.gsea_to_tsv(result.gsea[name], path)
            result.add_output(path)
        if name in result.ora:
            path = out / f"{name}_ora.tsv"
            generator.ora_to_tsv(result.ora[name], path)
            result.add_output(path)

    path = out / "summary.json"
    generator.to_json(list(result.contrasts.values()), path, gsea=result.gsea, ora=result.ora)
    result.add_output(path)

    if config.plots:
        write_plots(result, config, out / "plots")


def write_plots(result: PipelineResult, config: PipelineConfig, plot_dir: Path) -> None:
    viz = DiagnosticPlots(config.ranking)
    figures = {"library_sizes": viz.library_sizes(result.counts, result.sheet)}
    if result.model is not None:
        figures["pca"] = viz.pca(result.model.normalized_counts(), result.sheet)
    for name, contrast in result.contrasts.items():
        figures[f"{name}_volcano"] = viz.volcano(contrast)
        figures[f"{name}_ma"] = viz.ma_plot(contrast)
        if name in result.gsea:
            figures[f"{name}_gsea"] = viz.nes_bars(result.gsea[name])

    for stem, fig in figures.items():
        path = plot_dir / f"{stem}.html"
        viz.save_html(fig, path)
        result.add_output(path)


# =============================================================================
# Pipeline
# =============================================================================


def run_pipeline(
    config: PipelineConfig,
    annotator: Optional[GeneAnnotator] = None,
    progress: Optional[Callable[[str], None]] = None,
) -> PipelineResult:
    """
    Run the full workflow.

    Args:
        config: Pipeline configuration
        annotator: Gene annotator (defaults to the process-wide instance)
        progress: Callback receiving one-line progress messages

    Returns:
        PipelineResult with every intermediate and the written output paths
    """
    say = progress or logger.info

    say("Loading counts and sample sheet...")
    sheet, counts, filtered = prepare_counts(config)
    result = PipelineResult(sheet, counts, filtered)
    say(f"  {counts.shape[0]:,} genes x {counts.shape[1]} samples; "
        f"{filtered.shape[0]:,} genes pass the expression filter")

    say("Fitting joint model...")
    model = ContrastEstimator(config.de).fit(filtered, sheet)
    result.model = model
    say(f"  Design: {model.design}")

    if config.annotate:
        annotator = annotator or get_annotator()
    ranker = GeneRanker(config.ranking)

    for contrast in model.contrasts():
        if config.annotate:
            contrast = annotator.annotate(contrast)
        ranked = ranker.rank(contrast)
        result.add_contrast(contrast, ranked)
        say(f"  {contrast.name}: {len(ranked)} significant of {contrast.genes_tested:,} genes")

    if config.annotate:
        result.annotated = any(
            g.symbol for contrast in result.contrasts.values() for g in contrast.genes
        )
        if not result.annotated:
            logger.warning(
                "No tested gene could be annotated; writing all genes without symbols"
            )
            say("  Annotation matched no genes; tables keep unannotated rows")

    if config.enrichment.gene_sets or config.enrichment.run_ora:
        say("Running enrichment...")
        result.gsea, result.ora = run_enrichment(
            list(result.contrasts.values()),
            config.enrichment,
            ranked=result.ranked,
            effect_source=config.ranking.effect_source,
        )

    say(f"Writing outputs to {config.output_dir}...")
    write_outputs(result, config)
    return result
