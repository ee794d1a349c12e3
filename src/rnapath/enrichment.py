"""
Gene set enrichment analysis.

Two analyses are provided:

- ``PrerankEnrichment``: permutation-based GSEA on a whole-transcriptome
  ranking (gseapy ``prerank``) against a local gene-set collection.
- ``OverRepresentationAnalyzer``: over-representation of the significant up-
  and down-regulated genes, through a pluggable backend: a local collection
  (gseapy ``enrich``, hypergeometric test) or g:Profiler for GO, KEGG and
  Reactome terms.

Example:
    collection = load_gene_sets(["h.all.v2024.1.Hs.symbols.gmt.gz"])
    gsea = PrerankEnrichment(EnrichmentConfig(permutations=1000))
    result = gsea.run(ranking_metric(contrast_result), collection, contrast="A_vs_DMSO")
"""

import logging
from typing import List, Optional, Protocol, Sequence

import gseapy
import pandas as pd

from .config import EnrichmentConfig
from .de_result import (
    DirectionEnrichment,
    EnrichedSet,
    EnrichedTerm,
    EnrichmentProvenance,
    GeneResult,
    GseaResult,
    OraResult,
)
from .gene_sets import GeneSetCollection

logger = logging.getLogger(__name__)


def _gene_label(gene: GeneResult) -> str:
    return gene.symbol or gene.gene_id


def _split_genes(value) -> List[str]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return []
    return [g for g in str(value).split(";") if g]


# =============================================================================
# Pre-ranked GSEA
# =============================================================================


class PrerankEnrichment:
    """
    Pre-ranked GSEA against a local gene-set collection.

    Gene sets are first restricted to genes present in the ranking; sets whose
    overlap falls outside ``[min_size, max_size]`` are not tested and get no
    score. The permutation test itself is gseapy's.
    """

    def __init__(self, config: Optional[EnrichmentConfig] = None):
        self.config = config or EnrichmentConfig()

    def _provenance(self, collection: GeneSetCollection) -> EnrichmentProvenance:
        return EnrichmentProvenance(
            backend="gseapy_prerank",
            gene_set_sources=[s for s in collection.source.split(",") if s],
            min_size=self.config.min_size,
            max_size=self.config.max_size,
            permutations=self.config.permutations,
            seed=self.config.seed,
            ranking_metric=self.config.ranking_metric,
        )

    def run(
        self,
        ranking: pd.Series,
        collection: GeneSetCollection,
        contrast: str = "",
    ) -> GseaResult:
        """
        Run GSEA on a ranked gene list.

        Args:
            ranking: Ranking metric indexed by gene, any order.
            collection: Reference gene sets (same identifier space as ``ranking``).
            contrast: Label carried into the result.

        Returns:
            GseaResult with positive and negative sets, each by p-value ascending.
        """
        provenance = self._provenance(collection)
        ranking = ranking.dropna()
        ranking = ranking[~ranking.index.duplicated(keep="first")]

        tested = collection.restricted_to(
            ranking.index, min_size=self.config.min_size, max_size=self.config.max_size
        )
        logger.info(
            "%s: %d of %d gene sets within size bounds [%d, %d] over %d ranked genes",
            contrast or "GSEA",
            len(tested),
            len(collection),
            self.config.min_size,
            self.config.max_size,
            len(ranking),
        )
        if not tested:
            return GseaResult(contrast=contrast, provenance=provenance)

        rnk = ranking.sort_values(ascending=False, kind="mergesort")
        res = gseapy.prerank(
            rnk=rnk,
            gene_sets={name: sorted(genes) for name, genes in tested.items()},
            outdir=None,
            min_size=self.config.min_size,
            max_size=self.config.max_size,
            permutation_num=self.config.permutations,
            seed=self.config.seed,
            threads=self.config.threads,
            no_plot=True,
            verbose=False,
        )

        sets = [self._to_enriched_set(row, collection, tested) for _, row in res.res2d.iterrows()]
        positive = sorted((s for s in sets if s.es > 0), key=lambda s: (s.pvalue, -s.nes))
        negative = sorted((s for s in sets if s.es <= 0), key=lambda s: (s.pvalue, s.nes))

        result = GseaResult(
            contrast=contrast,
            provenance=provenance,
            positive=positive,
            negative=negative,
            n_sets_tested=len(sets),
        )
        logger.info("%s: %r", contrast or "GSEA", result)
        return result

    @staticmethod
    def _to_enriched_set(row: pd.Series, collection: GeneSetCollection, tested) -> EnrichedSet:
        term = str(row["Term"])
        fwer = row.get("FWER p-val")
        return EnrichedSet(
            term=term,
            es=float(row["ES"]),
            nes=float(row["NES"]),
            pvalue=float(row["NOM p-val"]),
            fdr=float(row["FDR q-val"]),
            fwer=None if fwer is None or pd.isna(fwer) else float(fwer),
            set_size=len(collection[term]) if term in collection else 0,
            matched_size=len(tested.get(term, ())),
            lead_genes=_split_genes(row.get("Lead_genes")),
        )


# =============================================================================
# Over-representation analysis
# =============================================================================


class EnrichmentBackend(Protocol):
    """Protocol for over-representation backends."""

    name: str

    def analyze(self, genes: List[str], universe: Sequence[str]) -> List[EnrichedTerm]:
        """
        Run over-representation analysis on a gene list.

        Args:
            genes: Query gene identifiers
            universe: Background genes (all genes tested in the contrast)

        Returns:
            Significant terms
        """
        ...


class GseapyBackend:
    """
    Hypergeometric over-representation against a local gene-set collection.

    Uses ``gseapy.enrich`` offline; the background is the set of genes that
    survived the expression filter.
    """

    name = "gseapy_enrich"

    def __init__(
        self,
        collection: GeneSetCollection,
        threshold: float = 0.05,
        min_size: int = 15,
        max_size: int = 500,
    ):
        self.collection = collection
        self.threshold = threshold
        self.min_size = min_size
        self.max_size = max_size

    def analyze(self, genes: List[str], universe: Sequence[str]) -> List[EnrichedTerm]:
        if not genes:
            return []

        tested = self.collection.restricted_to(
            universe, min_size=self.min_size, max_size=self.max_size
        )
        if not tested:
            return []

        enr = gseapy.enrich(
            gene_list=list(genes),
            gene_sets={name: sorted(members) for name, members in tested.items()},
            background=list(universe),
            outdir=None,
            no_plot=True,
            verbose=False,
        )
        df = enr.res2d
        if df is None or df.empty:
            return []
        df = df[df["Adjusted P-value"] < self.threshold]

        terms = []
        for _, r in df.iterrows():
            hits, term_size = (int(x) for x in str(r["Overlap"]).split("/"))
            terms.append(
                EnrichedTerm(
                    term_id=str(r["Term"]),
                    term_name=self.collection.description(str(r["Term"])) or str(r["Term"]),
                    source=self.collection.source,
                    pvalue=float(r["P-value"]),
                    pvalue_adjusted=float(r["Adjusted P-value"]),
                    term_size=term_size,
                    query_size=len(genes),
                    intersection_size=hits,
                    genes=_split_genes(r.get("Genes")),
                )
            )
        return terms


class GProfilerBackend:
    """
    Over-representation analysis using the g:Profiler API.

    Uses the gprofiler-official package for server-side computation of GO,
    KEGG and Reactome enrichment. Requires network access and gene symbols.
    """

    name = "gprofiler"

    def __init__(
        self,
        organism: str = "hsapiens",
        sources: Optional[List[str]] = None,
        threshold: float = 0.05,
        correction: str = "g_SCS",
    ):
        self.organism = organism
        self.sources = sources or ["GO:BP", "GO:CC", "GO:MF", "KEGG", "REAC"]
        self.threshold = threshold
        self.correction = correction
        self._gp = None

    def _get_client(self):
        """Lazy initialization of g:Profiler client."""
        if self._gp is None:
            from gprofiler import GProfiler

            self._gp = GProfiler(return_dataframe=False)
        return self._gp

    def analyze(self, genes: List[str], universe: Sequence[str]) -> List[EnrichedTerm]:
        if not genes:
            return []

        gp = self._get_client()
        result = gp.profile(
            organism=self.organism,
            query=list(genes),
            sources=self.sources,
            user_threshold=self.threshold,
            significance_threshold_method=self.correction,
            background=list(universe) or None,
            domain_scope="custom" if universe else "annotated",
            no_evidences=False,  # Include intersections (gene lists)
        )
        if not result:
            return []

        return [
            EnrichedTerm(
                term_id=r["native"],
                term_name=r["name"],
                source=r["source"],
                pvalue=r["p_value"],
                pvalue_adjusted=r["p_value"],  # g:Profiler returns adjusted by default
                term_size=r["term_size"],
                query_size=r["query_size"],
                intersection_size=r["intersection_size"],
                genes=r.get("intersections", []),
            )
            for r in result
        ]


class OverRepresentationAnalyzer:
    """
    Over-representation analysis of significant genes, per direction.

    Example:
        backend = GseapyBackend(collection)
        analyzer = OverRepresentationAnalyzer(config, backend)
        result = analyzer.analyze("A_vs_DMSO", ranked_genes, universe)
    """

    def __init__(
        self,
        config: Optional[EnrichmentConfig] = None,
        backend: Optional[EnrichmentBackend] = None,
    ):
        self.config = config or EnrichmentConfig()
        self.backend = backend or GProfilerBackend(
            organism=self.config.organism,
            sources=self.config.sources,
            threshold=self.config.ora_threshold,
        )

    def analyze(
        self,
        contrast: str,
        genes: List[GeneResult],
        universe: Sequence[str],
    ) -> OraResult:
        """
        Run up- and down-regulated genes through the backend separately.

        Args:
            contrast: Label carried into the result
            genes: Significant genes (e.g. ``GeneRanker.rank`` output)
            universe: All tested genes, same identifier space as ``genes``

        Returns:
            OraResult with terms for both directions
        """
        up_genes = [_gene_label(g) for g in genes if g.direction == "up"]
        down_genes = [_gene_label(g) for g in genes if g.direction == "down"]

        provenance = EnrichmentProvenance(
            backend=self.backend.name,
            gene_set_sources=list(self.config.sources)
            if self.backend.name == "gprofiler"
            else list(self.config.gene_sets),
            min_size=self.config.min_size,
            max_size=self.config.max_size,
        )
        return OraResult(
            contrast=contrast,
            provenance=provenance,
            upregulated=self.analyze_gene_list(up_genes, "up", universe),
            downregulated=self.analyze_gene_list(down_genes, "down", universe),
        )

    def analyze_gene_list(
        self,
        genes: List[str],
        direction: str,
        universe: Sequence[str],
    ) -> DirectionEnrichment:
        if len(genes) < self.config.min_genes:
            logger.info(
                "Skipping %s-regulated over-representation: %d genes < %d",
                direction,
                len(genes),
                self.config.min_genes,
            )
            return DirectionEnrichment(direction=direction, input_genes=genes, terms=[])

        terms = self.backend.analyze(genes, universe)
        return DirectionEnrichment(direction=direction, input_genes=genes, terms=terms)
