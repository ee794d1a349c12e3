"""Shared fixtures: a small synthetic experiment with two batches."""

import numpy as np
import pandas as pd
import pytest

from rnapath.samples import SampleRecord, SampleSheet

CONDITIONS = ("DMSO", "CPDA", "CPDB")
BATCHES = ("b1", "b2")
REPLICATES_PER_BATCH = 2

# Genes 0-9 are induced by CPDA, genes 10-19 repressed by CPDB
N_GENES = 120
N_CHANGED = 10


def make_sheet() -> SampleSheet:
    records = []
    for condition in CONDITIONS:
        for batch in BATCHES:
            for rep in range(REPLICATES_PER_BATCH):
                records.append(
                    SampleRecord(
                        sample_id=f"{condition}_{batch}_{rep + 1}",
                        condition=condition,
                        batch=batch,
                    )
                )
    return SampleSheet(records=tuple(records), reference="DMSO")


def make_counts(sheet: SampleSheet, seed: int = 7) -> pd.DataFrame:
    """Negative-binomial counts with condition and batch effects."""
    rng = np.random.default_rng(seed)
    base = rng.uniform(50, 1000, size=N_GENES)
    dispersion = 0.05

    columns = {}
    for record in sheet.records:
        mu = base.copy()
        if record.condition == "CPDA":
            mu[:N_CHANGED] *= 8.0
        if record.condition == "CPDB":
            mu[N_CHANGED:2 * N_CHANGED] /= 8.0
        if record.batch == "b2":
            mu *= 1.3
        n = 1.0 / dispersion
        p = n / (n + mu)
        columns[record.sample_id] = rng.negative_binomial(n, p)

    index = pd.Index([f"ENSG{i:011d}" for i in range(N_GENES)], name="gene_id")
    return pd.DataFrame(columns, index=index)


@pytest.fixture
def sheet():
    return make_sheet()


@pytest.fixture
def counts(sheet):
    return make_counts(sheet)


@pytest.fixture
def sample_sheet_file(tmp_path, sheet):
    path = tmp_path / "samples.tsv"
    sheet.to_frame().reset_index().to_csv(path, sep="\t", index=False)
    return path


@pytest.fixture
def count_file(tmp_path, counts):
    path = tmp_path / "counts.tsv"
    counts.to_csv(path, sep="\t")
    return path
