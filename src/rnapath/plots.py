"""
Interactive diagnostic plots for contrast and enrichment results.

All figures are Plotly figures that can be shown in a notebook or saved as
standalone HTML:

    viz = DiagnosticPlots()
    fig = viz.volcano(result)
    viz.save_html(fig, "results/A_vs_DMSO_volcano.html")
"""

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .config import RankingConfig
from .de_result import ContrastResult, GseaResult
from .gene_ranker import GeneRanker
from .samples import SampleSheet

logger = logging.getLogger(__name__)

COLORS = {
    "up": "#e74c3c",      # Red (up-regulated)
    "down": "#3498db",    # Blue (down-regulated)
    "neutral": "#95a5a6", # Gray
}


class DiagnosticPlots:
    """Volcano, MA, PCA, library-size and NES bar charts."""

    def __init__(self, ranking: Optional[RankingConfig] = None, template: str = "plotly_white"):
        self.ranking = ranking or RankingConfig()
        self.ranker = GeneRanker(self.ranking)
        self.template = template

    def _gene_frame(self, result: ContrastResult) -> pd.DataFrame:
        df = result.to_frame()
        df["label"] = df["symbol"].fillna(df["gene_id"])
        significant = {g.gene_id for g in self.ranker.rank(result)}
        df["status"] = "neutral"
        is_sig = df["gene_id"].isin(significant)
        df.loc[is_sig & (df["log2FoldChange"] > 0), "status"] = "up"
        df.loc[is_sig & (df["log2FoldChange"] <= 0), "status"] = "down"
        return df

    def volcano(self, result: ContrastResult, height: int = 600, width: int = 800) -> go.Figure:
        """log2 fold change against -log10 adjusted p-value; genes without padj are omitted."""
        df = self._gene_frame(result)
        df = df[df["padj"].notna()].copy()
        if df.empty:
            return self._empty_figure(f"{result.name}: no genes with adjusted p-values")
        df["neg_log10_padj"] = -np.log10(df["padj"].clip(lower=1e-300))

        fig = go.Figure()
        for status in ("neutral", "down", "up"):
            sub = df[df["status"] == status]
            fig.add_trace(go.Scattergl(
                x=sub["log2FoldChange"],
                y=sub["neg_log10_padj"],
                mode="markers",
                name=status,
                text=sub["label"],
                marker=dict(color=COLORS[status], size=5, opacity=0.7),
                hovertemplate="%{text}<br>log2FC=%{x:.2f}<br>-log10 padj=%{y:.2f}<extra></extra>",
            ))

        thr = self.ranking.lfc_threshold
        fig.add_vline(x=thr, line_dash="dash", line_color="gray")
        fig.add_vline(x=-thr, line_dash="dash", line_color="gray")
        fig.add_hline(y=-np.log10(self.ranking.padj_threshold), line_dash="dash", line_color="gray")
        fig.update_layout(
            title=f"Volcano: {result.name}",
            xaxis_title="log2 fold change",
            yaxis_title="-log10 adjusted p-value",
            template=self.template,
            height=height,
            width=width,
        )
        return fig

    def ma_plot(self, result: ContrastResult, height: int = 600, width: int = 800) -> go.Figure:
        """Mean of normalized counts against log2 fold change (shrunk when available)."""
        df = self._gene_frame(result)
        df = df[df["baseMean"] > 0].copy()
        if df.empty:
            return self._empty_figure(f"{result.name}: no expressed genes")
        y_col = "log2FoldChange"
        if df["log2FoldChange_shrunk"].notna().any():
            y_col = "log2FoldChange_shrunk"

        fig = go.Figure()
        for status in ("neutral", "down", "up"):
            sub = df[df["status"] == status]
            fig.add_trace(go.Scattergl(
                x=sub["baseMean"],
                y=sub[y_col],
                mode="markers",
                name=status,
                text=sub["label"],
                marker=dict(color=COLORS[status], size=4, opacity=0.7),
            ))
        fig.add_hline(y=0, line_color="black")
        fig.update_layout(
            title=f"MA plot: {result.name}",
            xaxis=dict(title="mean of normalized counts", type="log"),
            yaxis_title=y_col,
            template=self.template,
            height=height,
            width=width,
        )
        return fig

    def pca(
        self,
        normalized: pd.DataFrame,
        sheet: SampleSheet,
        n_top: int = 500,
        height: int = 600,
        width: int = 800,
    ) -> go.Figure:
        """
        PCA of log2(normalized + 1) counts on the most variable genes.

        Args:
            normalized: Normalized counts (genes x samples)
            sheet: Sample metadata for colouring (condition) and symbols (batch)
            n_top: Number of most variable genes used
        """
        if normalized.shape[0] < 2 or normalized.shape[1] < 2:
            return self._empty_figure("Not enough genes or samples for PCA")

        logged = np.log2(normalized.astype(float) + 1.0)
        variances = logged.var(axis=1).sort_values(ascending=False, kind="mergesort")
        top = logged.loc[variances.index[:n_top]]

        # samples x genes, centred per gene
        matrix = top.T.values
        matrix = matrix - matrix.mean(axis=0)
        u, s, _ = np.linalg.svd(matrix, full_matrices=False)
        explained = (s ** 2) / max((s ** 2).sum(), np.finfo(float).tiny)
        coords = u * s

        meta = sheet.to_frame().loc[list(normalized.columns)]
        plot_df = pd.DataFrame({
            "sample_id": list(normalized.columns),
            "PC1": coords[:, 0],
            "PC2": coords[:, 1] if coords.shape[1] > 1 else 0.0,
            "condition": meta["condition"].astype(str).values,
            "batch": meta["batch"].astype(str).values,
        })
        fig = px.scatter(
            plot_df,
            x="PC1",
            y="PC2",
            color="condition",
            symbol="batch",
            hover_name="sample_id",
            template=self.template,
            height=height,
            width=width,
        )
        pc2 = explained[1] if len(explained) > 1 else 0.0
        fig.update_layout(
            title=f"PCA of top {len(top)} variable genes",
            xaxis_title=f"PC1 ({explained[0]:.1%})",
            yaxis_title=f"PC2 ({pc2:.1%})",
        )
        fig.update_traces(marker=dict(size=12))
        return fig

    def library_sizes(self, counts: pd.DataFrame, sheet: SampleSheet) -> go.Figure:
        """Total counts per sample, coloured by condition."""
        totals = counts.sum(axis=0)
        conditions = sheet.condition_of()
        plot_df = pd.DataFrame({
            "sample_id": totals.index,
            "total_counts": totals.values,
            "condition": [conditions.get(s, "") for s in totals.index],
        })
        fig = px.bar(
            plot_df,
            x="sample_id",
            y="total_counts",
            color="condition",
            template=self.template,
        )
        fig.update_layout(title="Library sizes", xaxis_title="", yaxis_title="total counts")
        return fig

    def nes_bars(
        self,
        gsea: GseaResult,
        top_n: int = 10,
        fdr_threshold: Optional[float] = None,
        height: int = 600,
        width: int = 900,
    ) -> go.Figure:
        """Top positive and negative sets by p-value, as horizontal NES bars."""
        sets = gsea.positive[:top_n] + gsea.negative[:top_n]
        if fdr_threshold is not None:
            sets = [s for s in sets if s.fdr < fdr_threshold]
        if not sets:
            return self._empty_figure(f"{gsea.contrast}: no enriched gene sets")

        sets = sorted(sets, key=lambda s: s.nes)
        fig = go.Figure(go.Bar(
            x=[s.nes for s in sets],
            y=[s.term for s in sets],
            orientation="h",
            marker_color=[COLORS["up"] if s.nes > 0 else COLORS["down"] for s in sets],
            customdata=[[s.fdr, s.matched_size] for s in sets],
            hovertemplate="%{y}<br>NES=%{x:.2f}<br>FDR=%{customdata[0]:.3f}"
                          "<br>genes=%{customdata[1]}<extra></extra>",
        ))
        fig.update_layout(
            title=f"GSEA: {gsea.contrast}",
            xaxis_title="normalized enrichment score",
            template=self.template,
            height=height,
            width=width,
        )
        return fig

    def _empty_figure(self, message: str) -> go.Figure:
        """Create an empty figure with a message."""
        fig = go.Figure()
        fig.add_annotation(
            text=message,
            xref="paper", yref="paper",
            x=0.5, y=0.5,
            showarrow=False,
            font=dict(size=16, color="gray"),
        )
        fig.update_layout(
            template=self.template,
            xaxis=dict(visible=False),
            yaxis=dict(visible=False),
        )
        return fig

    def save_html(self, fig: go.Figure, filepath: Union[str, Path], include_plotlyjs="cdn"):
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        fig.write_html(str(filepath), include_plotlyjs=include_plotlyjs, full_html=True)
        logger.info("Saved plot: %s", filepath)
