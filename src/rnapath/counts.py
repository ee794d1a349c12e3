"""
Count matrix loading and filtering.

Counts come either from a pre-aggregated tab-separated matrix (gene ids as
rows, sample ids as columns) or from per-sample Salmon ``quant.sf`` files,
which are summed from transcripts to genes through a transcript-to-gene
table. Both paths return integer counts ready for the negative-binomial fit.
"""

import gzip
import logging
from pathlib import Path
from typing import Dict, Mapping, Union

import numpy as np
import pandas as pd

from .samples import SampleSheet

logger = logging.getLogger(__name__)

QUANT_FILE = "quant.sf"
QUANT_COLUMNS = ("Name", "Length", "EffectiveLength", "TPM", "NumReads")


# =============================================================================
# Count matrix
# =============================================================================


def _validate_counts(counts: pd.DataFrame) -> pd.DataFrame:
    if not counts.index.is_unique:
        dupes = counts.index[counts.index.duplicated()].unique()[:5]
        raise ValueError(f"Duplicate gene ids in count matrix: {', '.join(map(str, dupes))}")
    if not counts.columns.is_unique:
        dupes = counts.columns[counts.columns.duplicated()].unique()
        raise ValueError(f"Duplicate sample ids in count matrix: {', '.join(map(str, dupes))}")

    non_numeric = [c for c in counts.columns if not pd.api.types.is_numeric_dtype(counts[c])]
    if non_numeric:
        raise ValueError(f"Non-numeric count columns: {', '.join(map(str, non_numeric))}")
    if counts.isna().any().any():
        raise ValueError("Count matrix contains missing values")
    if (counts < 0).any().any():
        raise ValueError("Count matrix contains negative values")

    # Quantifier estimates are fractional; the NB model needs integers
    return counts.round().astype(np.int64)


def load_count_matrix(path: Union[str, Path]) -> pd.DataFrame:
    """Read a tab-separated gene x sample count matrix.

    The first column holds gene ids; the header row holds sample ids.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On duplicate ids, missing, negative or non-numeric counts.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Count matrix not found: {path}")

    # read_csv renames repeated headers ("S1", "S1.1"), so check them first
    with path.open("r", encoding="utf-8") as fh:
        header = fh.readline().rstrip("\r\n").split("\t")[1:]
    dupes = sorted({s for s in header if header.count(s) > 1})
    if dupes:
        raise ValueError(f"Duplicate sample ids in count matrix: {', '.join(dupes)}")

    counts = pd.read_csv(path, sep="\t", index_col=0)
    counts.index = counts.index.astype(str)
    counts.index.name = "gene_id"
    counts.columns = counts.columns.astype(str)

    counts = _validate_counts(counts)
    logger.info("Loaded count matrix %s: %d genes x %d samples", path, *counts.shape)
    return counts


def align_counts(counts: pd.DataFrame, sheet: SampleSheet) -> pd.DataFrame:
    """Order count columns as in the sample sheet.

    Every count column must map to exactly one sample record and every
    record must have a count column.
    """
    in_counts = set(counts.columns)
    in_sheet = set(sheet.sample_ids)

    missing = [s for s in sheet.sample_ids if s not in in_counts]
    extra = [s for s in counts.columns if s not in in_sheet]
    if missing or extra:
        parts = []
        if missing:
            parts.append(f"no counts for samples: {', '.join(missing)}")
        if extra:
            parts.append(f"no metadata for samples: {', '.join(map(str, extra))}")
        raise ValueError("Count matrix and sample sheet do not match; " + "; ".join(parts))

    return counts[sheet.sample_ids]


def filter_counts(
    counts: pd.DataFrame,
    min_count: int = 10,
    min_samples: int = 2,
) -> pd.DataFrame:
    """Keep genes with at least ``min_samples`` samples at ``min_count`` or more.

    Row order is preserved; an empty result is valid.
    """
    expressed = (counts >= min_count).sum(axis=1)
    kept = counts.loc[expressed >= min_samples]
    logger.info(
        "Expression filter (>= %d counts in >= %d samples): kept %d of %d genes",
        min_count,
        min_samples,
        len(kept),
        len(counts),
    )
    return kept


def library_sizes(counts: pd.DataFrame) -> pd.Series:
    """Total counts per sample."""
    return counts.sum(axis=0).rename("library_size")


# =============================================================================
# Salmon quantifications
# =============================================================================


def _open_text(path: Path):
    if path.suffix == ".gz":
        return gzip.open(path, "rt", encoding="utf-8")
    return path.open("r", encoding="utf-8")


def read_tx2gene_fasta(path: Union[str, Path]) -> pd.Series:
    """Build a transcript -> gene map from GENCODE transcript FASTA headers.

    GENCODE headers look like
    ``>ENST00000456328.2|ENSG00000290825.1|-|-|DDX11L2-202|DDX11L2|1657|lncRNA|``.
    Salmon run with ``--gencode`` names transcripts by the first field only.
    """
    path = Path(path)
    mapping: Dict[str, str] = {}
    with _open_text(path) as fh:
        for line in fh:
            if not line.startswith(">"):
                continue
            fields = line[1:].strip().split("|")
            if len(fields) < 2 or not fields[1]:
                continue
            mapping[fields[0]] = fields[1]

    if not mapping:
        raise ValueError(f"No GENCODE transcript headers found in {path}")
    logger.info("Read %d transcript-to-gene pairs from %s", len(mapping), path)
    return pd.Series(mapping, name="gene_id")


def read_tx2gene(path: Union[str, Path]) -> pd.Series:
    """Read a transcript -> gene table.

    Accepts a two-column TSV (transcript id, gene id; header optional) or a
    GENCODE transcript FASTA (``.fa``, ``.fasta``, optionally gzipped).
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Transcript-to-gene table not found: {path}")

    suffixes = [s for s in path.suffixes if s != ".gz"]
    if suffixes and suffixes[-1] in {".fa", ".fasta", ".fna"}:
        return read_tx2gene_fasta(path)

    df = pd.read_csv(path, sep="\t", header=None, dtype=str, usecols=[0, 1])
    if df.iloc[0, 0].lower() in {"transcript_id", "tx", "txname", "transcript"}:
        df = df.iloc[1:]
    return pd.Series(df[1].values, index=df[0].values, name="gene_id")


def read_quant_file(path: Union[str, Path]) -> pd.DataFrame:
    """Read one Salmon ``quant.sf`` table indexed by transcript name."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Salmon quantification not found: {path}")

    df = pd.read_csv(path, sep="\t")
    missing = [c for c in QUANT_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {', '.join(missing)}")
    return df.set_index("Name")


def load_salmon_counts(
    quant_dirs: Mapping[str, Union[str, Path]],
    tx2gene: pd.Series,
) -> pd.DataFrame:
    """Aggregate per-sample Salmon estimates to a gene-level count matrix.

    Args:
        quant_dirs: Sample id -> Salmon output directory (or ``quant.sf`` path).
        tx2gene: Transcript id -> gene id.

    Returns:
        Integer gene x sample matrix, columns in ``quant_dirs`` order.
    """
    columns = {}
    for sample_id, location in quant_dirs.items():
        location = Path(location)
        quant_path = location / QUANT_FILE if location.is_dir() else location
        quant = read_quant_file(quant_path)

        genes = quant.index.to_series().map(tx2gene)
        has_gene = genes.notna()
        unmapped = int((~has_gene).sum())
        if unmapped:
            logger.warning(
                "%s: %d of %d transcripts have no gene mapping and were dropped",
                sample_id,
                unmapped,
                len(quant),
            )
        mapped = quant.loc[has_gene.values, "NumReads"]
        columns[sample_id] = mapped.groupby(genes[has_gene].values).sum()
        logger.info("%s: %.0f reads over %d genes", sample_id, mapped.sum(), len(columns[sample_id]))

    counts = pd.DataFrame(columns).fillna(0.0)
    counts.index.name = "gene_id"
    return _validate_counts(counts)


def write_count_matrix(counts: pd.DataFrame, path: Union[str, Path]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    counts.to_csv(path, sep="\t", index_label="gene_id")
