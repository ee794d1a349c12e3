"""
Result dataclasses for contrast estimation and enrichment analysis.

A ``ContrastResult`` is produced once per treatment-vs-reference contrast and
is treated as read-only afterwards: ranking and annotation return new
objects instead of editing the genes in place.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd


@dataclass(frozen=True)
class GeneResult:
    """
    Result for a single gene in one contrast.

    ``log2_fold_change``, ``pvalue`` and ``pvalue_adjusted`` are the Wald test
    values; ``log2_fold_change_shrunk`` is only filled by the optional
    shrinkage pass and is meant for ranking and plotting.
    """

    gene_id: str
    log2_fold_change: float
    pvalue: Optional[float]
    pvalue_adjusted: Optional[float]  # BH-corrected
    base_mean: float = 0.0
    lfc_se: Optional[float] = None
    stat: Optional[float] = None
    log2_fold_change_shrunk: Optional[float] = None
    symbol: Optional[str] = None
    name: Optional[str] = None

    @property
    def direction(self) -> str:
        return "up" if self.log2_fold_change > 0 else "down"

    @property
    def effect_size(self) -> float:
        """Absolute effect size (|log2FC|)."""
        return abs(self.log2_fold_change)

    def is_significant(self, padj_threshold: float = 0.05) -> bool:
        if self.pvalue_adjusted is None:
            return False
        return self.pvalue_adjusted < padj_threshold

    def __repr__(self) -> str:
        adj_p = f"{self.pvalue_adjusted:.2e}" if self.pvalue_adjusted is not None else "N/A"
        label = self.symbol or self.gene_id
        return f"GeneResult({label}, log2FC={self.log2_fold_change:.2f}, p_adj={adj_p})"


@dataclass
class ContrastProvenance:
    """Parameters needed to reproduce one contrast."""

    treatment: str
    reference: str
    design: str
    n_treatment_samples: int
    n_reference_samples: int
    n_samples_total: int
    shrunk: bool = False
    method: str = "pydeseq2"
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "contrast": {"treatment": self.treatment, "reference": self.reference},
            "design": self.design,
            "samples": {
                "n_treatment": self.n_treatment_samples,
                "n_reference": self.n_reference_samples,
                "n_total": self.n_samples_total,
            },
            "method": self.method,
            "lfc_shrinkage": self.shrunk,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ContrastResult:
    """All genes tested in one treatment-vs-reference contrast, in model row order."""

    provenance: ContrastProvenance
    genes: Tuple[GeneResult, ...]

    @property
    def name(self) -> str:
        return f"{self.provenance.treatment}_vs_{self.provenance.reference}"

    @property
    def genes_tested(self) -> int:
        return len(self.genes)

    def get_gene(self, gene_id: str) -> Optional[GeneResult]:
        for gene in self.genes:
            if gene.gene_id == gene_id:
                return gene
        return None

    def with_genes(self, genes: Iterable[GeneResult]) -> "ContrastResult":
        """Copy of this result with a different gene list."""
        return replace(self, genes=tuple(genes))

    def to_frame(self) -> pd.DataFrame:
        """Tabular view with the column names used in output tables."""
        rows = [
            {
                "gene_id": g.gene_id,
                "symbol": g.symbol,
                "name": g.name,
                "baseMean": g.base_mean,
                "log2FoldChange": g.log2_fold_change,
                "lfcSE": g.lfc_se,
                "stat": g.stat,
                "pvalue": g.pvalue,
                "padj": g.pvalue_adjusted,
                "log2FoldChange_shrunk": g.log2_fold_change_shrunk,
            }
            for g in self.genes
        ]
        columns = [
            "gene_id", "symbol", "name", "baseMean", "log2FoldChange",
            "lfcSE", "stat", "pvalue", "padj", "log2FoldChange_shrunk",
        ]
        return pd.DataFrame(rows, columns=columns)

    def __repr__(self) -> str:
        return f"ContrastResult({self.name}, genes_tested={self.genes_tested})"


# =============================================================================
# Enrichment Analysis Result Dataclasses
# =============================================================================


@dataclass(frozen=True)
class EnrichedSet:
    """Pre-ranked GSEA statistics for one gene set."""

    term: str
    es: float
    nes: float
    pvalue: float
    fdr: float
    fwer: Optional[float]
    set_size: int  # genes in the reference set
    matched_size: int  # genes of the set present in the ranking
    lead_genes: List[str] = field(default_factory=list)

    @property
    def direction(self) -> str:
        return "positive" if self.es > 0 else "negative"

    def to_dict(self) -> dict:
        return {
            "term": self.term,
            "direction": self.direction,
            "es": self.es,
            "nes": self.nes,
            "pvalue": self.pvalue,
            "fdr": self.fdr,
            "fwer": self.fwer,
            "set_size": self.set_size,
            "matched_size": self.matched_size,
            "lead_genes": list(self.lead_genes),
        }


@dataclass
class EnrichmentProvenance:
    """Parameters needed to reproduce an enrichment run."""

    backend: str  # "gseapy_prerank", "gseapy_enrich", "gprofiler"
    gene_set_sources: List[str]
    min_size: int
    max_size: int
    permutations: Optional[int] = None
    seed: Optional[int] = None
    ranking_metric: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "backend": self.backend,
            "gene_set_sources": self.gene_set_sources,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "permutations": self.permutations,
            "seed": self.seed,
            "ranking_metric": self.ranking_metric,
            "timestamp": self.timestamp,
        }


@dataclass
class GseaResult:
    """
    Pre-ranked GSEA result for one contrast.

    ``positive`` and ``negative`` each hold sets sorted by p-value ascending.
    """

    contrast: str
    provenance: EnrichmentProvenance
    positive: List[EnrichedSet] = field(default_factory=list)
    negative: List[EnrichedSet] = field(default_factory=list)
    n_sets_tested: int = 0

    @property
    def all_sets(self) -> List[EnrichedSet]:
        return self.positive + self.negative

    def get_set(self, term: str) -> Optional[EnrichedSet]:
        for s in self.all_sets:
            if s.term == term:
                return s
        return None

    def significant(self, fdr_threshold: float = 0.25) -> List[EnrichedSet]:
        return [s for s in self.all_sets if s.fdr < fdr_threshold]

    def to_frame(self) -> pd.DataFrame:
        columns = [
            "term", "direction", "es", "nes", "pvalue", "fdr", "fwer",
            "set_size", "matched_size", "lead_genes",
        ]
        rows = []
        for s in self.all_sets:
            row = s.to_dict()
            row["lead_genes"] = ";".join(s.lead_genes)
            rows.append(row)
        return pd.DataFrame(rows, columns=columns)

    def to_dict(self) -> dict:
        return {
            "contrast": self.contrast,
            "provenance": self.provenance.to_dict(),
            "summary": {
                "n_sets_tested": self.n_sets_tested,
                "n_positive": len(self.positive),
                "n_negative": len(self.negative),
            },
            "positive": [s.to_dict() for s in self.positive],
            "negative": [s.to_dict() for s in self.negative],
        }

    def __repr__(self) -> str:
        return (
            f"GseaResult({self.contrast}, tested={self.n_sets_tested}, "
            f"positive={len(self.positive)}, negative={len(self.negative)})"
        )


@dataclass
class EnrichedTerm:
    """
    A single over-represented term (gene set, GO term, pathway).
    """

    term_id: str
    term_name: str
    source: str
    pvalue: float
    pvalue_adjusted: float
    term_size: int
    query_size: int
    intersection_size: int
    genes: List[str] = field(default_factory=list)

    def __repr__(self) -> str:
        return (
            f"EnrichedTerm({self.term_id}, {self.term_name!r}, "
            f"p_adj={self.pvalue_adjusted:.2e}, genes={self.intersection_size})"
        )

    def to_dict(self) -> dict:
        return {
            "term_id": self.term_id,
            "term_name": self.term_name,
            "source": self.source,
            "pvalue": self.pvalue,
            "pvalue_adjusted": self.pvalue_adjusted,
            "term_size": self.term_size,
            "query_size": self.query_size,
            "intersection_size": self.intersection_size,
            "genes": self.genes,
        }


@dataclass
class DirectionEnrichment:
    """
    Over-representation results for genes in one direction (up or down regulated).
    """

    direction: str  # "up" | "down"
    input_genes: List[str]
    terms: List[EnrichedTerm] = field(default_factory=list)

    @property
    def n_terms(self) -> int:
        return len(self.terms)

    def get_top_terms(self, n: int = 10, source: Optional[str] = None) -> List[EnrichedTerm]:
        """Top N terms by adjusted p-value, optionally for one source."""
        terms = self.terms
        if source:
            terms = [t for t in terms if t.source == source]
        return sorted(terms, key=lambda t: t.pvalue_adjusted)[:n]

    def to_dict(self) -> dict:
        return {
            "direction": self.direction,
            "input_genes": len(self.input_genes),
            "n_significant_terms": self.n_terms,
            "terms": [t.to_dict() for t in self.terms],
        }


@dataclass
class OraResult:
    """Over-representation result for both directions of one contrast."""

    contrast: str
    provenance: EnrichmentProvenance
    upregulated: DirectionEnrichment
    downregulated: DirectionEnrichment

    @property
    def total_terms(self) -> int:
        return self.upregulated.n_terms + self.downregulated.n_terms

    def to_dict(self) -> Dict[str, object]:
        return {
            "contrast": self.contrast,
            "provenance": self.provenance.to_dict(),
            "summary": {
                "total_significant_terms": self.total_terms,
                "upregulated_terms": self.upregulated.n_terms,
                "downregulated_terms": self.downregulated.n_terms,
            },
            "upregulated": self.upregulated.to_dict(),
            "downregulated": self.downregulated.to_dict(),
        }

    def __repr__(self) -> str:
        return (
            f"OraResult({self.contrast}, total_terms={self.total_terms}, "
            f"up={self.upregulated.n_terms}, down={self.downregulated.n_terms})"
        )
