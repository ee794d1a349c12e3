"""
rnapath: differential expression and gene-set enrichment for RNA-seq.

## Differential Expression

One negative-binomial model is fitted across all samples
(``~ batch + condition``); each treatment-vs-reference contrast is read off
that fit.

```python
from rnapath import (
    ContrastEstimator, DEConfig, align_counts, filter_counts, load_count_matrix, load_sample_sheet,
)

sheet = load_sample_sheet("samples.tsv", reference="DMSO")
counts = filter_counts(align_counts(load_count_matrix("counts.tsv"), sheet))
model = ContrastEstimator(DEConfig(shrink=True)).fit(counts, sheet)
results = model.contrasts()
```

## Enrichment

```python
from rnapath import PrerankEnrichment, load_gene_sets, ranking_metric

collection = load_gene_sets(["h.all.v2024.1.Hs.symbols.gmt.gz"])
gsea = PrerankEnrichment().run(ranking_metric(results[0]), collection)
```

## Command Line Interface

```bash
rnapath run config.json
rnapath de --counts counts.tsv --samples samples.tsv --reference DMSO
```
"""

from .config import (
    DEConfig,
    EnrichmentConfig,
    FilterConfig,
    PipelineConfig,
    RankingConfig,
)
from .samples import SampleRecord, SampleSheet, load_sample_sheet
from .counts import (
    align_counts,
    filter_counts,
    load_count_matrix,
    load_salmon_counts,
    read_tx2gene,
    read_tx2gene_fasta,
)
from .de_result import (
    ContrastProvenance,
    ContrastResult,
    DirectionEnrichment,
    EnrichedSet,
    EnrichedTerm,
    EnrichmentProvenance,
    GeneResult,
    GseaResult,
    OraResult,
)
from .contrasts import ContrastEstimator, FittedModel, build_design
from .gene_ranker import GeneRanker, ranking_metric, separate_by_direction
from .gene_sets import GeneSetCollection, load_gene_sets, load_gmt, parse_gmt
from .enrichment import (
    EnrichmentBackend,
    GProfilerBackend,
    GseapyBackend,
    OverRepresentationAnalyzer,
    PrerankEnrichment,
)
from .annotation import GeneAnnotator, get_annotator
from .report import ReportGenerator, read_contrast_table
from .pipeline import PipelineResult, run_pipeline

__all__ = [
    # Configuration
    "DEConfig",
    "EnrichmentConfig",
    "FilterConfig",
    "PipelineConfig",
    "RankingConfig",
    # Inputs
    "SampleRecord",
    "SampleSheet",
    "load_sample_sheet",
    "align_counts",
    "filter_counts",
    "load_count_matrix",
    "load_salmon_counts",
    "read_tx2gene",
    "read_tx2gene_fasta",
    # Differential expression
    "ContrastEstimator",
    "FittedModel",
    "build_design",
    "ContrastProvenance",
    "ContrastResult",
    "GeneResult",
    "GeneRanker",
    "ranking_metric",
    "separate_by_direction",
    # Enrichment
    "GeneSetCollection",
    "load_gene_sets",
    "load_gmt",
    "parse_gmt",
    "PrerankEnrichment",
    "OverRepresentationAnalyzer",
    "EnrichmentBackend",
    "GseapyBackend",
    "GProfilerBackend",
    "EnrichedSet",
    "EnrichedTerm",
    "EnrichmentProvenance",
    "DirectionEnrichment",
    "GseaResult",
    "OraResult",
    # Output
    "GeneAnnotator",
    "get_annotator",
    "ReportGenerator",
    "read_contrast_table",
    "PipelineResult",
    "run_pipeline",
]
