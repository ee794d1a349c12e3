"""
Contrast estimation with a single joint negative-binomial model.

Uses PyDESeq2 (Python implementation of DESeq2). All samples and all
conditions are fitted once with the design ``~ batch + condition``, so size
factors, dispersions and batch effects are shared by every contrast. Each
treatment-vs-reference contrast is then a Wald test read off the fitted
model; nothing is refitted per contrast.

Example:
    estimator = ContrastEstimator(DEConfig(shrink=True))
    model = estimator.fit(filtered_counts, sheet)
    for result in model.contrasts():
        print(result.name, result.genes_tested)
"""

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.default_inference import DefaultInference
from pydeseq2.ds import DeseqStats

from .config import DEConfig
from .de_result import ContrastProvenance, ContrastResult, GeneResult
from .samples import SampleSheet

logger = logging.getLogger(__name__)


def _optional_float(value) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def build_design(sheet: SampleSheet, config: DEConfig) -> str:
    """Design formula for the joint fit.

    A batch term needs at least two batches to be estimable.
    """
    if len(sheet.batches) > 1:
        return f"~{config.batch_column} + {config.condition_column}"
    return f"~{config.condition_column}"


class FittedModel:
    """
    A joint fit shared by all contrasts.

    Contrast extraction only reads from the fitted ``DeseqDataSet``; call
    ``contrast`` as many times as needed.
    """

    def __init__(
        self,
        dds: DeseqDataSet,
        sheet: SampleSheet,
        design: str,
        config: DEConfig,
        inference: DefaultInference,
    ):
        self.dds = dds
        self.sheet = sheet
        self.design = design
        self.config = config
        self._inference = inference

    @property
    def gene_ids(self) -> List[str]:
        return [str(g) for g in self.dds.var_names]

    @property
    def size_factors(self) -> pd.Series:
        return pd.Series(
            np.asarray(self.dds.obs["size_factors"], dtype=float),
            index=self.dds.obs_names,
            name="size_factor",
        )

    def normalized_counts(self) -> pd.DataFrame:
        """Size-factor normalized counts, genes x samples."""
        normed = pd.DataFrame(
            np.asarray(self.dds.layers["normed_counts"]),
            index=self.dds.obs_names,
            columns=self.dds.var_names,
        )
        return normed.T

    def _coefficient_name(self, treatment: str) -> str:
        """Name of the design-matrix column holding ``treatment`` vs reference."""
        factor = self.config.condition_column
        columns = [str(c) for c in self.dds.obsm["design_matrix"].columns]
        candidates = [
            f"{factor}[T.{treatment}]",
            f"{factor}_{treatment}_vs_{self.sheet.reference}",
        ]
        for name in candidates:
            if name in columns:
                return name
        raise ValueError(
            f"No design coefficient for condition {treatment!r}; "
            f"design matrix columns: {', '.join(columns)}"
        )

    def contrast(self, treatment: str, shrink: Optional[bool] = None) -> ContrastResult:
        """
        Wald test of ``treatment`` against the reference condition.

        Args:
            treatment: A non-reference condition label.
            shrink: Add shrunk log2 fold changes (defaults to ``config.shrink``).
                Wald statistics and p-values are not affected.

        Returns:
            ContrastResult with one GeneResult per fitted gene, in model order.
        """
        if treatment == self.sheet.reference:
            raise ValueError(f"{treatment!r} is the reference condition")
        if treatment not in self.sheet.treatments:
            raise ValueError(
                f"Unknown condition {treatment!r}; expected one of: "
                f"{', '.join(self.sheet.treatments)}"
            )
        if shrink is None:
            shrink = self.config.shrink

        logger.info("Extracting contrast %s vs %s", treatment, self.sheet.reference)
        stats = DeseqStats(
            self.dds,
            contrast=[self.config.condition_column, treatment, self.sheet.reference],
            alpha=self.config.alpha,
            cooks_filter=self.config.cooks_filter,
            independent_filter=self.config.independent_filter,
            inference=self._inference,
            quiet=self.config.quiet,
        )
        stats.summary()
        results_df = stats.results_df.copy()

        shrunk_lfc: Dict[str, float] = {}
        if shrink:
            stats.lfc_shrink(coeff=self._coefficient_name(treatment))
            shrunk_lfc = stats.results_df["log2FoldChange"].to_dict()

        genes = []
        for gene_id, row in results_df.iterrows():
            log2fc = row.get("log2FoldChange", 0.0)
            if pd.isna(log2fc):
                log2fc = 0.0
            base_mean = row.get("baseMean", 0.0)
            if pd.isna(base_mean):
                base_mean = 0.0

            genes.append(
                GeneResult(
                    gene_id=str(gene_id),
                    log2_fold_change=float(log2fc),
                    pvalue=_optional_float(row.get("pvalue")),
                    pvalue_adjusted=_optional_float(row.get("padj")),
                    base_mean=float(base_mean),
                    lfc_se=_optional_float(row.get("lfcSE")),
                    stat=_optional_float(row.get("stat")),
                    log2_fold_change_shrunk=_optional_float(shrunk_lfc.get(gene_id)),
                )
            )

        provenance = ContrastProvenance(
            treatment=treatment,
            reference=self.sheet.reference,
            design=self.design,
            n_treatment_samples=len(self.sheet.samples_for(treatment)),
            n_reference_samples=len(self.sheet.samples_for(self.sheet.reference)),
            n_samples_total=len(self.sheet),
            shrunk=bool(shrink),
        )
        n_sig = sum(1 for g in genes if g.is_significant(self.config.alpha))
        logger.info(
            "%s vs %s: %d genes tested, %d with padj < %s",
            treatment,
            self.sheet.reference,
            len(genes),
            n_sig,
            self.config.alpha,
        )
        return ContrastResult(provenance=provenance, genes=tuple(genes))

    def contrasts(self, shrink: Optional[bool] = None) -> List[ContrastResult]:
        """One result per non-reference condition, in sample-sheet order."""
        return [self.contrast(t, shrink=shrink) for t in self.sheet.treatments]


class ContrastEstimator:
    """
    Fits the joint model used for every contrast.

    Expects raw integer counts (genes x samples) whose columns match the
    sample sheet. PyDESeq2 handles median-of-ratios normalization,
    dispersion estimation and the GLM fit internally.
    """

    def __init__(self, config: Optional[DEConfig] = None):
        self.config = config or DEConfig()

    def fit(self, counts: pd.DataFrame, sheet: SampleSheet) -> FittedModel:
        """
        Fit ``counts ~ batch + condition`` across all samples.

        Args:
            counts: Filtered integer count matrix (genes x samples).
            sheet: Sample metadata with the reference condition.

        Returns:
            FittedModel to query contrasts from.
        """
        if counts.empty:
            raise ValueError("Cannot fit a model on an empty count matrix")
        if list(counts.columns) != sheet.sample_ids:
            raise ValueError("Count columns must be aligned to the sample sheet before fitting")
        if len(sheet.treatments) == 0:
            raise ValueError("Sample sheet has no treatment condition besides the reference")

        metadata = sheet.to_frame()
        metadata = metadata.rename(
            columns={"condition": self.config.condition_column, "batch": self.config.batch_column}
        )
        design = build_design(sheet, self.config)

        n_cpus = self.config.n_cpus
        inference = DefaultInference(n_cpus=n_cpus) if n_cpus else DefaultInference()

        logger.info(
            "Fitting %s on %d genes x %d samples (reference: %s)",
            design,
            counts.shape[0],
            counts.shape[1],
            sheet.reference,
        )

        # PyDESeq2 expects (samples x genes)
        dds = DeseqDataSet(
            counts=counts.T.astype(int),
            metadata=metadata,
            design=design,
            refit_cooks=self.config.refit_cooks,
            inference=inference,
            quiet=self.config.quiet,
        )
        dds.deseq2()

        return FittedModel(dds, sheet, design, self.config, inference)
