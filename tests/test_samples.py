"""Tests for the sample sheet."""

import pandas as pd
import pytest

from rnapath.samples import SampleRecord, SampleSheet, load_sample_sheet


class TestSampleSheet:
    def test_conditions_in_first_appearance_order(self, sheet):
        assert sheet.conditions == ["DMSO", "CPDA", "CPDB"]
        assert sheet.treatments == ["CPDA", "CPDB"]
        assert sheet.batches == ["b1", "b2"]

    def test_samples_for(self, sheet):
        assert sheet.samples_for("CPDA") == [
            "CPDA_b1_1", "CPDA_b1_2", "CPDA_b2_1", "CPDA_b2_2",
        ]

    def test_reference_is_first_level(self):
        records = (
            SampleRecord("T1", "treated", "1"),
            SampleRecord("C1", "control", "1"),
        )
        frame = SampleSheet(records, reference="control").to_frame()
        assert list(frame["condition"].cat.categories) == ["control", "treated"]
        assert list(frame.index) == ["T1", "C1"]

    def test_duplicate_sample_ids(self):
        records = (SampleRecord("S1", "A", "1"), SampleRecord("S1", "B", "1"))
        with pytest.raises(ValueError, match="Duplicate sample ids"):
            SampleSheet(records, reference="A")

    def test_empty(self):
        with pytest.raises(ValueError):
            SampleSheet((), reference="A")

    def test_immutable(self, sheet):
        with pytest.raises(AttributeError):
            sheet.reference = "CPDA"

    def test_missing_columns(self):
        df = pd.DataFrame({"sample_id": ["S1"], "condition": ["A"]})
        with pytest.raises(ValueError, match="batch"):
            SampleSheet.from_frame(df, reference="A")


class TestLoadSampleSheet:
    def test_load(self, sample_sheet_file):
        sheet = load_sample_sheet(sample_sheet_file, reference="DMSO")
        assert len(sheet) == 12
        assert sheet.condition_of()["CPDB_b2_2"] == "CPDB"

    def test_extra_columns_ignored(self, tmp_path):
        path = tmp_path / "s.tsv"
        path.write_text("sample_id\tcondition\tbatch\tnote\nS1\tA\t1\tx\nS2\tB\t1\ty\n")
        sheet = load_sample_sheet(path, reference="A")
        assert sheet.sample_ids == ["S1", "S2"]

    def test_batch_read_as_text(self, tmp_path):
        path = tmp_path / "s.tsv"
        path.write_text("sample_id\tcondition\tbatch\nS1\tA\t01\n")
        assert load_sample_sheet(path, reference="A").records[0].batch == "01"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_sample_sheet(tmp_path / "missing.tsv", reference="A")

    def test_unknown_reference(self, sample_sheet_file):
        with pytest.raises(ValueError, match="PLACEBO"):
            load_sample_sheet(sample_sheet_file, reference="PLACEBO")

    def test_blank_condition_or_batch(self, tmp_path):
        path = tmp_path / "s.tsv"
        path.write_text(
            "sample_id\tcondition\tbatch\n"
            "S1\tDMSO\t1\n"
            "S2\tCPDA\t1\n"
            "S3\t\t1\n"
            "S4\tCPDA\t\n"
        )
        with pytest.raises(ValueError, match="S3, S4"):
            load_sample_sheet(path, reference="DMSO")

    def test_whitespace_only_value(self):
        df = pd.DataFrame({"sample_id": ["S1", "S2"], "condition": ["A", " "], "batch": ["1", "1"]})
        with pytest.raises(ValueError, match="S2"):
            SampleSheet.from_frame(df, reference="A")
