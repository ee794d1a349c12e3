"""Configuration dataclasses for the rnapath workflow.

Each pipeline stage has its own small dataclass so the stages can be used
independently; ``PipelineConfig`` bundles them together with the input and
output paths and can be loaded from a JSON file::

    {
        "counts": "data/counts.tsv",
        "samples": "data/samples.tsv",
        "reference": "DMSO",
        "output_dir": "results",
        "filter": {"min_count": 10, "min_samples": 2},
        "de": {"shrink": true},
        "enrichment": {"gene_sets": ["data/h.all.v2024.1.Hs.symbols.gmt.gz"]}
    }
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

# Default cache location for downloaded reference data
DEFAULT_CACHE_DIR = Path.home() / ".rnapath"

# Environment variable overriding the HGNC cache file
HGNC_CACHE_ENV = "RNAPATH_HGNC_CACHE"

RankingMetric = Literal["signed_significance", "log2fc"]
EffectSource = Literal["mle", "shrunk"]


@dataclass
class FilterConfig:
    """Minimum-expression filter applied before model fitting.

    Attributes:
        min_count: Count a sample must reach for the gene to count as expressed.
        min_samples: Number of samples that must reach ``min_count``.
    """

    min_count: int = 10
    min_samples: int = 2


@dataclass
class DEConfig:
    """Configuration for the joint negative-binomial fit.

    The model is always ``~ batch + condition`` with the reference condition
    fixed before fitting. ``batch`` is dropped from the design when the sample
    sheet holds a single batch.
    """

    condition_column: str = "condition"
    batch_column: str = "batch"

    # Significance level used by PyDESeq2's independent filtering
    alpha: float = 0.05

    cooks_filter: bool = True
    independent_filter: bool = True
    refit_cooks: bool = True

    # Apply apeGLM-style LFC shrinkage to every contrast after the Wald test
    shrink: bool = False

    n_cpus: Optional[int] = None
    quiet: bool = True


@dataclass
class RankingConfig:
    """Thresholds for selecting and ordering significant genes."""

    lfc_threshold: float = 1.0
    padj_threshold: float = 0.05
    effect_source: EffectSource = "mle"
    top_n: int = 50


@dataclass
class EnrichmentConfig:
    """Configuration for pre-ranked GSEA and over-representation analysis.

    Attributes:
        gene_sets: GMT files (plain or gzip-compressed) to test against.
        min_size: Smallest gene-set overlap with the ranking to be tested.
        max_size: Largest gene-set overlap with the ranking to be tested.
        permutations: Number of gene-set permutations for GSEA.
        seed: Random seed for the permutation test.
        threads: Worker threads handed to gseapy.
        ranking_metric: ``signed_significance`` (-log10 p * sign(LFC)) or
            ``log2fc``.
        fdr_threshold: Cut-off applied when writing significant sets.
        run_ora: Also run over-representation on up/down gene lists.
        ora_backend: ``gseapy`` (local gene sets) or ``gprofiler`` (online).
        organism: g:Profiler organism id.
        sources: g:Profiler data sources.
        min_genes: Minimum list length for over-representation analysis.
    """

    gene_sets: List[str] = field(default_factory=list)
    min_size: int = 15
    max_size: int = 500
    permutations: int = 1000
    seed: int = 42
    threads: int = 4
    ranking_metric: RankingMetric = "signed_significance"
    fdr_threshold: float = 0.25

    run_ora: bool = False
    ora_backend: Literal["gseapy", "gprofiler"] = "gseapy"
    organism: str = "hsapiens"
    sources: List[str] = field(
        default_factory=lambda: ["GO:BP", "GO:CC", "GO:MF", "KEGG", "REAC"]
    )
    ora_threshold: float = 0.05
    min_genes: int = 5


@dataclass
class PipelineConfig:
    """Top-level configuration for ``run_pipeline``."""

    counts: Optional[str] = None
    samples: Optional[str] = None
    reference: str = "control"
    output_dir: str = "results"

    # Alternative to ``counts``: per-sample Salmon output directories
    quant_dirs: Dict[str, str] = field(default_factory=dict)
    tx2gene: Optional[str] = None

    annotate: bool = True
    plots: bool = True

    filter: FilterConfig = field(default_factory=FilterConfig)
    de: DEConfig = field(default_factory=DEConfig)
    ranking: RankingConfig = field(default_factory=RankingConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)

    def __post_init__(self):
        if not self.counts and not self.quant_dirs:
            raise ValueError("Either 'counts' or 'quant_dirs' must be configured")
        if self.quant_dirs and not self.tx2gene:
            raise ValueError("'quant_dirs' requires a 'tx2gene' table or FASTA")

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PipelineConfig":
        sections = {
            "filter": FilterConfig,
            "de": DEConfig,
            "ranking": RankingConfig,
            "enrichment": EnrichmentConfig,
        }
        known = {f.name for f in fields(cls)}
        unknown = set(payload) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        kwargs: Dict[str, Any] = {}
        for key, value in payload.items():
            if key in sections:
                try:
                    kwargs[key] = sections[key](**(value or {}))
                except TypeError as exc:
                    raise ValueError(f"Invalid '{key}' section: {exc}") from exc
            else:
                kwargs[key] = value
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "PipelineConfig":
        with Path(path).open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
        return cls.from_dict(payload)


def hgnc_cache_path() -> Path:
    """Resolve the HGNC cache file, honouring ``RNAPATH_HGNC_CACHE``."""
    env_path = os.environ.get(HGNC_CACHE_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CACHE_DIR / "hgnc_gene_annotation.tsv"
