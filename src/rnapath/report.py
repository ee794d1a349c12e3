"""
Report generation for contrast and enrichment results.

Supports multiple output formats:
- TSV: Gene and gene-set tables for spreadsheet analysis
- JSON: Provenance and summary counts for programmatic use
- Console: Human-readable summary
"""

import csv
import json
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from .config import RankingConfig
from .de_result import ContrastProvenance, ContrastResult, GeneResult, GseaResult, OraResult
from .gene_ranker import GeneRanker, separate_by_direction

GENE_COLUMNS = ["gene_id", "symbol", "name", "log2FoldChange", "pvalue", "padj"]
# File-name suffix of tables holding only threshold-passing genes
RANKED_SUFFIX = "_ranked"


def _fmt_p(value: Optional[float]) -> str:
    return f"{value:.3e}" if value is not None else "NA"


def _fmt_float(value: Optional[float]) -> str:
    # Shortest text that reads back to the same float
    return repr(float(value)) if value is not None else "NA"


def _has_shrunk(genes: List[GeneResult]) -> bool:
    return any(g.log2_fold_change_shrunk is not None for g in genes)


class ReportGenerator:
    """
    Writes per-contrast tables and summaries.

    Example:
        generator = ReportGenerator(RankingConfig(), annotated_only=True)
        generator.to_tsv(result, "results/A_vs_DMSO.tsv")
        print(generator.to_console_summary(result))
    """

    def __init__(self, ranking: Optional[RankingConfig] = None, annotated_only: bool = False):
        self.ranking = ranking or RankingConfig()
        self.ranker = GeneRanker(self.ranking)
        # Drop genes without a symbol from written tables
        self.annotated_only = annotated_only

    def _table_genes(self, genes) -> List[GeneResult]:
        if self.annotated_only:
            return [g for g in genes if g.symbol]
        return list(genes)

    # =========================================================================
    # Gene tables
    # =========================================================================

    def to_tsv(self, result: ContrastResult, path: Union[str, Path], ranked: bool = False) -> int:
        """
        Write gene results to a TSV file.

        Args:
            result: Contrast result
            path: Output file path
            ranked: Write only threshold-passing genes, in rank order

        Returns:
            Number of rows written
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        genes = self.ranker.rank(result) if ranked else result.genes
        genes = self._table_genes(genes)
        shrunk = _has_shrunk(genes)

        header = list(GENE_COLUMNS)
        if shrunk:
            header.append("log2FoldChange_shrunk")

        with open(path, "w", newline="") as f:
            writer = csv.writer(f, delimiter="\t")
            writer.writerow(header)
            for gene in genes:
                row = [
                    gene.gene_id,
                    gene.symbol or "",
                    gene.name or "",
                    _fmt_float(gene.log2_fold_change),
                    _fmt_float(gene.pvalue),
                    _fmt_float(gene.pvalue_adjusted),
                ]
                if shrunk:
                    row.append(_fmt_float(gene.log2_fold_change_shrunk))
                writer.writerow(row)
        return len(genes)

    # =========================================================================
    # Enrichment tables
    # =========================================================================

    def gsea_to_tsv(
        self,
        gsea: GseaResult,
        path: Union[str, Path],
        fdr_threshold: Optional[float] = None,
    ) -> int:
        """Write enriched sets (positive first, then negative), optionally FDR-filtered."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        df = gsea.to_frame()
        if fdr_threshold is not None:
            df = df[df["fdr"] < fdr_threshold]
        df.to_csv(path, sep="\t", index=False, float_format="%.4g")
        return len(df)

    def ora_to_tsv(self, ora: OraResult, path: Union[str, Path]) -> int:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        terms = [("up", t) for t in ora.upregulated.terms]
        terms += [("down", t) for t in ora.downregulated.terms]

        with open(path, "w", newline="") as f:
            writer = csv.writer(f, delimiter="\t")
            writer.writerow([
                "direction",
                "term_id",
                "term_name",
                "source",
                "pvalue",
                "pvalue_adjusted",
                "intersection_size",
                "term_size",
                "genes",
            ])
            for dir_label, term in sorted(terms, key=lambda x: x[1].pvalue_adjusted):
                writer.writerow([
                    dir_label,
                    term.term_id,
                    term.term_name,
                    term.source,
                    f"{term.pvalue:.2e}",
                    f"{term.pvalue_adjusted:.2e}",
                    term.intersection_size,
                    term.term_size,
                    ",".join(term.genes),
                ])
        return len(terms)

    # =========================================================================
    # Summaries
    # =========================================================================

    def summary(self, result: ContrastResult) -> Dict[str, object]:
        """Counts and thresholds for one contrast."""
        up, down = separate_by_direction(self._table_genes(self.ranker.rank(result)))
        return {
            "contrast": result.name,
            "provenance": result.provenance.to_dict(),
            "thresholds": {
                "log2fc": self.ranking.lfc_threshold,
                "padj": self.ranking.padj_threshold,
                "effect_source": self.ranking.effect_source,
            },
            "genes_tested": result.genes_tested,
            "n_upregulated": len(up),
            "n_downregulated": len(down),
        }

    def to_json(
        self,
        results: List[ContrastResult],
        path: Union[str, Path],
        gsea: Optional[Dict[str, GseaResult]] = None,
        ora: Optional[Dict[str, OraResult]] = None,
        indent: int = 2,
    ) -> None:
        """
        Write a JSON summary of every contrast, with enrichment when given.

        Args:
            results: Contrast results
            path: Output file path
            gsea: GSEA results keyed by contrast name
            ora: Over-representation results keyed by contrast name
            indent: JSON indentation level
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = []
        for result in results:
            entry = self.summary(result)
            if gsea and result.name in gsea:
                entry["gsea"] = gsea[result.name].to_dict()
            if ora and result.name in ora:
                entry["ora"] = ora[result.name].to_dict()
            payload.append(entry)

        with open(path, "w") as f:
            json.dump({"contrasts": payload}, f, indent=indent)

    def to_console_summary(
        self,
        result: ContrastResult,
        gsea: Optional[GseaResult] = None,
        top_n: int = 10,
    ) -> str:
        """
        Generate human-readable console summary.

        Args:
            result: Contrast result
            gsea: Optional GSEA result for the same contrast
            top_n: Number of top genes (and sets) to show per direction

        Returns:
            Formatted string report
        """
        prov = result.provenance
        ranked = self._table_genes(self.ranker.rank(result))
        up, down = separate_by_direction(ranked)
        down = list(reversed(down))

        lines = []
        lines.append("=" * 70)
        lines.append(f"CONTRAST {prov.treatment} vs {prov.reference}")
        lines.append("=" * 70)
        lines.append(f"  Design: {prov.design}")
        lines.append(
            f"  Samples: {prov.n_treatment_samples} treatment, "
            f"{prov.n_reference_samples} reference, {prov.n_samples_total} in model"
        )
        lines.append(f"  LFC shrinkage: {'yes' if prov.shrunk else 'no'}")
        lines.append(
            f"  Thresholds: |log2FC| >= {self.ranking.lfc_threshold}, "
            f"padj < {self.ranking.padj_threshold}"
        )
        lines.append("")
        lines.append(f"  Genes tested: {result.genes_tested:,}")
        lines.append(f"  Upregulated: {len(up):,}")
        lines.append(f"  Downregulated: {len(down):,}")

        for title, genes in (("UPREGULATED", up), ("DOWNREGULATED", down)):
            if not genes:
                continue
            lines.append("")
            lines.append("-" * 70)
            lines.append(f"TOP {min(top_n, len(genes))} {title} GENES")
            lines.append("-" * 70)
            lines.append(f"  {'Gene':<18} {'Log2FC':>10} {'P-adj':>12} {'BaseMean':>12}")
            for gene in genes[:top_n]:
                lines.append(
                    f"  {(gene.symbol or gene.gene_id):<18} {gene.log2_fold_change:>10.2f} "
                    f"{_fmt_p(gene.pvalue_adjusted):>12} {gene.base_mean:>12.1f}"
                )

        if gsea is not None:
            lines.append("")
            lines.append("-" * 70)
            lines.append(f"GSEA ({gsea.n_sets_tested} sets tested)")
            lines.append("-" * 70)
            for label, sets in (("positive", gsea.positive), ("negative", gsea.negative)):
                for s in sets[:top_n]:
                    lines.append(
                        f"  [{label}] {s.term[:44]:<44} NES={s.nes:>6.2f} FDR={s.fdr:.3f}"
                    )

        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)


def read_contrast_table(path: Union[str, Path]) -> ContrastResult:
    """
    Read a per-contrast TSV written by ``ReportGenerator.to_tsv``.

    The contrast label is taken from a ``<treatment>_vs_<reference>`` file name.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On missing columns.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Contrast table not found: {path}")

    df = pd.read_csv(
        path,
        sep="\t",
        dtype={"gene_id": str, "symbol": str, "name": str},
        float_precision="round_trip",
    )
    missing = [c for c in ("gene_id", "log2FoldChange", "pvalue", "padj") if c not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {', '.join(missing)}")

    def opt(value) -> Optional[float]:
        return None if pd.isna(value) else float(value)

    def opt_str(value) -> Optional[str]:
        return None if pd.isna(value) or value == "" else str(value)

    genes = []
    for row in df.to_dict("records"):
        genes.append(
            GeneResult(
                gene_id=str(row["gene_id"]),
                log2_fold_change=float(row["log2FoldChange"]),
                pvalue=opt(row["pvalue"]),
                pvalue_adjusted=opt(row["padj"]),
                log2_fold_change_shrunk=opt(row.get("log2FoldChange_shrunk", float("nan"))),
                symbol=opt_str(row.get("symbol", float("nan"))),
                name=opt_str(row.get("name", float("nan"))),
            )
        )

    stem = path.stem
    if stem.endswith(RANKED_SUFFIX):
        stem = stem[: -len(RANKED_SUFFIX)]
    treatment, _, reference = stem.partition("_vs_")
    provenance = ContrastProvenance(
        treatment=treatment or stem,
        reference=reference or "reference",
        design="",
        n_treatment_samples=0,
        n_reference_samples=0,
        n_samples_total=0,
        shrunk="log2FoldChange_shrunk" in df.columns,
    )
    return ContrastResult(provenance=provenance, genes=tuple(genes))
