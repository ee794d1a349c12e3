"""
Gene ranking and threshold filtering for contrast results.

The ranker keeps genes passing both the effect-size and the adjusted
significance thresholds and orders them by effect size, descending. The
sort is stable, so genes with equal effect sizes keep the order they had in
the contrast result.
"""

from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import EffectSource, RankingConfig, RankingMetric
from .de_result import ContrastResult, GeneResult


def effect_of(gene: GeneResult, source: EffectSource = "mle") -> float:
    """Effect size used for ranking.

    ``shrunk`` falls back to the Wald estimate for genes without a shrunk value.
    """
    if source == "shrunk" and gene.log2_fold_change_shrunk is not None:
        return gene.log2_fold_change_shrunk
    return gene.log2_fold_change


class GeneRanker:
    """
    Selects and orders significant genes from a contrast result.

    Example:
        ranker = GeneRanker(RankingConfig(lfc_threshold=1.0, padj_threshold=0.05))
        ranked = ranker.rank(result)
        up, down = separate_by_direction(ranked)
    """

    def __init__(self, config: Optional[RankingConfig] = None):
        self.config = config or RankingConfig()

    def passes(self, gene: GeneResult) -> bool:
        """Both thresholds on the unshrunk Wald statistics."""
        if gene.pvalue_adjusted is None:
            return False
        return (
            gene.pvalue_adjusted < self.config.padj_threshold
            and abs(gene.log2_fold_change) >= self.config.lfc_threshold
        )

    def rank(self, result: ContrastResult) -> List[GeneResult]:
        """
        Filter by thresholds and sort descending by effect size.

        Args:
            result: ContrastResult from the contrast estimator

        Returns:
            Significant genes, largest effect first; ties keep input order.
        """
        selected = [g for g in result.genes if self.passes(g)]
        source = self.config.effect_source
        # sorted() is stable
        return sorted(selected, key=lambda g: effect_of(g, source), reverse=True)

    def top_upregulated(self, result: ContrastResult, n: Optional[int] = None) -> List[GeneResult]:
        if n is None:
            n = self.config.top_n
        return [g for g in self.rank(result) if g.direction == "up"][:n]

    def top_downregulated(self, result: ContrastResult, n: Optional[int] = None) -> List[GeneResult]:
        """Most strongly decreased genes first."""
        if n is None:
            n = self.config.top_n
        down = [g for g in self.rank(result) if g.direction == "down"]
        return list(reversed(down))[:n]

    def to_frame(self, result: ContrastResult) -> pd.DataFrame:
        ranked = result.with_genes(self.rank(result))
        return ranked.to_frame()


def separate_by_direction(
    genes: List[GeneResult],
) -> Tuple[List[GeneResult], List[GeneResult]]:
    """
    Separate genes into upregulated and downregulated lists.

    Args:
        genes: List of GeneResult objects

    Returns:
        Tuple of (upregulated, downregulated) lists
    """
    up = [g for g in genes if g.direction == "up"]
    down = [g for g in genes if g.direction == "down"]
    return up, down


def ranking_metric(
    result: ContrastResult,
    metric: RankingMetric = "signed_significance",
    effect_source: EffectSource = "mle",
) -> pd.Series:
    """
    Whole-transcriptome ranking used as GSEA pre-rank input.

    ``signed_significance`` is -log10(pvalue) * sign(log2FC); ``log2fc`` is the
    effect size itself. Genes without a p-value are left out of the
    significance metric. Returned highest first, indexed by gene (symbol when
    annotated, gene id otherwise); duplicate labels keep the first occurrence.
    """
    labels = []
    values = []
    for gene in result.genes:
        lfc = effect_of(gene, effect_source)
        if metric == "log2fc":
            value = lfc
        else:
            if gene.pvalue is None:
                continue
            pvalue = max(gene.pvalue, 1e-300)
            value = -np.log10(pvalue) * np.sign(lfc)
        labels.append(gene.symbol or gene.gene_id)
        values.append(float(value))

    series = pd.Series(values, index=labels, name=metric, dtype=float)
    series = series[~series.index.duplicated(keep="first")]
    return series.sort_values(ascending=False, kind="mergesort")
