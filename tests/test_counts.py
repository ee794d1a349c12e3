"""Tests for count loading, alignment, filtering and Salmon aggregation."""

import gzip

import numpy as np
import pandas as pd
import pytest

from rnapath.counts import (
    align_counts,
    filter_counts,
    library_sizes,
    load_count_matrix,
    load_salmon_counts,
    read_tx2gene,
    read_tx2gene_fasta,
    write_count_matrix,
)
from rnapath.samples import SampleRecord, SampleSheet


def _write(path, text):
    path.write_text(text)
    return path


def _quant_sf(path, rows):
    lines = ["Name\tLength\tEffectiveLength\tTPM\tNumReads"]
    for name, reads in rows:
        lines.append(f"{name}\t1000\t850.0\t1.0\t{reads}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path


class TestFilterCounts:
    """Minimum-expression filter."""

    def test_example_keeps_a_and_c(self):
        counts = pd.DataFrame(
            {"DMSO": [12, 3, 50], "treatment": [48, 2, 49]},
            index=["A", "B", "C"],
        )
        kept = filter_counts(counts, min_count=10, min_samples=2)
        assert list(kept.index) == ["A", "C"]

    def test_retained_rows_satisfy_predicate(self, counts):
        kept = filter_counts(counts, min_count=200, min_samples=3)
        assert len(kept) <= len(counts)
        assert ((kept >= 200).sum(axis=1) >= 3).all()
        dropped = counts.index.difference(kept.index)
        assert ((counts.loc[dropped] >= 200).sum(axis=1) < 3).all()

    def test_preserves_row_order(self, counts):
        kept = filter_counts(counts, min_count=100, min_samples=2)
        positions = [counts.index.get_loc(g) for g in kept.index]
        assert positions == sorted(positions)

    def test_empty_result_is_valid(self):
        counts = pd.DataFrame({"S1": [0, 1], "S2": [0, 2]}, index=["A", "B"])
        kept = filter_counts(counts, min_count=10, min_samples=1)
        assert kept.empty
        assert list(kept.columns) == ["S1", "S2"]

    def test_threshold_is_inclusive(self):
        counts = pd.DataFrame({"S1": [10], "S2": [10]}, index=["A"])
        assert len(filter_counts(counts, min_count=10, min_samples=2)) == 1


class TestLoadCountMatrix:
    """Reading and validating a count matrix file."""

    def test_load(self, count_file, counts):
        loaded = load_count_matrix(count_file)
        assert loaded.shape == counts.shape
        assert loaded.index.name == "gene_id"
        assert loaded.dtypes.unique().tolist() == [np.dtype("int64")]

    def test_fractional_counts_are_rounded(self, tmp_path):
        path = _write(tmp_path / "c.tsv", "gene_id\tS1\tS2\nG1\t10.6\t3.2\n")
        loaded = load_count_matrix(path)
        assert loaded.loc["G1"].tolist() == [11, 3]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_count_matrix(tmp_path / "nope.tsv")

    def test_negative_counts_rejected(self, tmp_path):
        path = _write(tmp_path / "c.tsv", "gene_id\tS1\nG1\t-1\n")
        with pytest.raises(ValueError, match="negative"):
            load_count_matrix(path)

    def test_non_numeric_rejected(self, tmp_path):
        path = _write(tmp_path / "c.tsv", "gene_id\tS1\nG1\tten\n")
        with pytest.raises(ValueError, match="Non-numeric"):
            load_count_matrix(path)

    def test_duplicate_genes_rejected(self, tmp_path):
        path = _write(tmp_path / "c.tsv", "gene_id\tS1\nG1\t1\nG1\t2\n")
        with pytest.raises(ValueError, match="Duplicate gene"):
            load_count_matrix(path)

    def test_duplicate_samples_rejected(self, tmp_path):
        path = _write(tmp_path / "c.tsv", "gene_id\tS1\tS1\nG1\t1\t2\n")
        with pytest.raises(ValueError, match="Duplicate sample"):
            load_count_matrix(path)

    def test_write_then_load(self, tmp_path, counts):
        path = tmp_path / "out" / "counts.tsv"
        write_count_matrix(counts, path)
        pd.testing.assert_frame_equal(load_count_matrix(path), counts.astype("int64"))


class TestAlignCounts:
    """Matching count columns to the sample sheet."""

    def test_reorders_to_sheet(self, counts, sheet):
        shuffled = counts[list(reversed(counts.columns))]
        aligned = align_counts(shuffled, sheet)
        assert list(aligned.columns) == sheet.sample_ids

    def test_missing_sample_named(self, counts, sheet):
        dropped = sheet.sample_ids[0]
        with pytest.raises(ValueError, match=dropped):
            align_counts(counts.drop(columns=[dropped]), sheet)

    def test_extra_sample_named(self, counts, sheet):
        counts = counts.assign(STRAY=1)
        with pytest.raises(ValueError, match="STRAY"):
            align_counts(counts, sheet)

    def test_library_sizes(self):
        counts = pd.DataFrame({"S1": [1, 2], "S2": [3, 4]}, index=["A", "B"])
        assert library_sizes(counts).to_dict() == {"S1": 3, "S2": 7}


class TestTx2Gene:
    """Transcript-to-gene tables."""

    HEADERS = (
        ">ENST00000456328.2|ENSG00000290825.1|-|-|DDX11L2-202|DDX11L2|1657|lncRNA|\n"
        "ACGT\n"
        ">ENST00000450305.2|ENSG00000223972.6|OTTHUMG00000000961.2|OTTHUMT00000002844.2|"
        "DDX11L1-201|DDX11L1|632|transcribed_unprocessed_pseudogene|\n"
        "ACGTACGT\nACGT\n"
    )

    def test_gencode_fasta(self, tmp_path):
        path = _write(tmp_path / "tx.fa", self.HEADERS)
        tx2gene = read_tx2gene_fasta(path)
        assert tx2gene.to_dict() == {
            "ENST00000456328.2": "ENSG00000290825.1",
            "ENST00000450305.2": "ENSG00000223972.6",
        }

    def test_gzipped_fasta_dispatch(self, tmp_path):
        path = tmp_path / "gencode.transcripts.fa.gz"
        with gzip.open(path, "wt") as fh:
            fh.write(self.HEADERS)
        assert len(read_tx2gene(path)) == 2

    def test_fasta_without_headers(self, tmp_path):
        path = _write(tmp_path / "tx.fa", ">plain_name\nACGT\n")
        with pytest.raises(ValueError):
            read_tx2gene_fasta(path)

    def test_tsv_with_header(self, tmp_path):
        path = _write(tmp_path / "tx2gene.tsv", "transcript_id\tgene_id\nT1\tG1\nT2\tG1\n")
        assert read_tx2gene(path).to_dict() == {"T1": "G1", "T2": "G1"}

    def test_tsv_without_header(self, tmp_path):
        path = _write(tmp_path / "tx2gene.tsv", "T1\tG1\nT2\tG2\n")
        assert read_tx2gene(path).to_dict() == {"T1": "G1", "T2": "G2"}


class TestSalmonCounts:
    """Aggregating quant.sf files to gene counts."""

    def test_sums_transcripts_per_gene(self, tmp_path):
        _quant_sf(tmp_path / "S1" / "quant.sf", [("T1", 10.4), ("T2", 5.0), ("T3", 7.0)])
        _quant_sf(tmp_path / "S2" / "quant.sf", [("T1", 1.0), ("T2", 2.0), ("T3", 0.0)])
        tx2gene = pd.Series({"T1": "G1", "T2": "G1", "T3": "G2"})

        counts = load_salmon_counts({"S1": tmp_path / "S1", "S2": tmp_path / "S2"}, tx2gene)

        assert list(counts.columns) == ["S1", "S2"]
        assert counts.loc["G1"].tolist() == [15, 3]
        assert counts.loc["G2"].tolist() == [7, 0]

    def test_unmapped_transcripts_dropped(self, tmp_path, caplog):
        _quant_sf(tmp_path / "S1" / "quant.sf", [("T1", 4.0), ("TX", 100.0)])
        counts = load_salmon_counts({"S1": tmp_path / "S1"}, pd.Series({"T1": "G1"}))
        assert counts.index.tolist() == ["G1"]
        assert "no gene mapping" in caplog.text

    def test_accepts_quant_file_path(self, tmp_path):
        path = _quant_sf(tmp_path / "S1" / "quant.sf", [("T1", 3.0)])
        counts = load_salmon_counts({"S1": path}, pd.Series({"T1": "G1"}))
        assert counts.loc["G1", "S1"] == 3

    def test_missing_quant_file(self, tmp_path):
        (tmp_path / "S1").mkdir()
        with pytest.raises(FileNotFoundError):
            load_salmon_counts({"S1": tmp_path / "S1"}, pd.Series({"T1": "G1"}))

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "S1" / "quant.sf"
        path.parent.mkdir()
        path.write_text("Name\tNumReads\nT1\t3\n")
        with pytest.raises(ValueError, match="missing columns"):
            load_salmon_counts({"S1": path}, pd.Series({"T1": "G1"}))


def test_sheet_rejects_unknown_reference():
    with pytest.raises(ValueError, match="Reference condition"):
        SampleSheet(records=(SampleRecord("S1", "A", "1"),), reference="B")
