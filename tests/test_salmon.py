"""Tests for the Salmon and SRA toolkit wrappers with subprocess mocked."""

import gzip
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from rnapath.salmon import (
    build_index,
    quantify_replicate,
    read_run_list,
    sample_name,
    write_decoys,
)

GENOME = ">chr1 1\nACGT\n>chr2 2\nACGT\n>chrM\nAC\n"


def _which(name):
    return f"/usr/bin/{name}"


def _fake_tools(calls):
    """subprocess.run stand-in that records commands and fakes fasterq-dump output."""

    def run(cmd, check, cwd=None):
        calls.append((cmd, cwd))
        if Path(cmd[0]).name == "fasterq-dump":
            run_id = cmd[1]
            out = Path(cwd) / "fastq"
            (out / f"{run_id}_1.fastq").write_text("@r\nA\n+\nI\n")
            (out / f"{run_id}_2.fastq").write_text("@r\nA\n+\nI\n")
        return subprocess.CompletedProcess(cmd, 0)

    return run


class TestBuildIndex:
    def test_decoys_from_headers(self, tmp_path):
        genome = tmp_path / "genome.fa.gz"
        with gzip.open(genome, "wt") as fh:
            fh.write(GENOME)
        decoys = tmp_path / "decoys.txt"
        assert write_decoys(genome, decoys) == 3
        assert decoys.read_text() == "chr1\nchr2\nchrM\n"

    def test_builds_gentrome_and_runs_salmon(self, tmp_path):
        transcripts = tmp_path / "tx.fa"
        transcripts.write_text(">ENST1|ENSG1|\nACGT\n")
        genome = tmp_path / "genome.fa"
        genome.write_text(GENOME)
        calls = []

        with patch("rnapath.salmon.shutil.which", side_effect=_which), \
                patch("rnapath.salmon.subprocess.run", side_effect=_fake_tools(calls)):
            index = build_index(transcripts, genome, tmp_path / "out" / "salmon-index", threads=4)

        assert index == tmp_path / "out" / "salmon-index"
        gentrome = tmp_path / "out" / "gentrome.fa"
        assert gentrome.read_text() == ">ENST1|ENSG1|\nACGT\n" + GENOME

        cmd = calls[0][0]
        assert cmd[:2] == ["/usr/bin/salmon", "index"]
        assert cmd[cmd.index("--decoys") + 1] == str(tmp_path / "out" / "decoys.txt")
        assert cmd[cmd.index("-p") + 1] == "4"
        assert cmd[-1] == "--gencode"

    def test_no_gencode_flag(self, tmp_path):
        transcripts = tmp_path / "tx.fa"
        transcripts.write_text(">T1\nA\n")
        genome = tmp_path / "genome.fa"
        genome.write_text(GENOME)
        calls = []
        with patch("rnapath.salmon.shutil.which", side_effect=_which), \
                patch("rnapath.salmon.subprocess.run", side_effect=_fake_tools(calls)):
            build_index(transcripts, genome, tmp_path / "idx", gencode=False)
        assert "--gencode" not in calls[0][0]

    def test_missing_fasta(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            build_index(tmp_path / "tx.fa", tmp_path / "g.fa", tmp_path / "idx")

    def test_missing_salmon(self, tmp_path):
        transcripts = tmp_path / "tx.fa"
        transcripts.write_text(">T1\nA\n")
        with patch("rnapath.salmon.shutil.which", return_value=None):
            with pytest.raises(FileNotFoundError, match="salmon"):
                build_index(transcripts, transcripts, tmp_path / "idx")


class TestQuantifyReplicate:
    @pytest.fixture
    def run_list(self, tmp_path):
        path = tmp_path / "DMSO_1_SRRn"
        path.write_text("SRR100\n\nSRR101\n")
        return path

    @pytest.fixture
    def index_dir(self, tmp_path):
        path = tmp_path / "salmon-index"
        path.mkdir()
        return path

    def test_run_list_helpers(self, run_list):
        assert read_run_list(run_list) == ["SRR100", "SRR101"]
        assert sample_name(run_list) == "DMSO_1"
        assert sample_name(Path("runs.txt")) == "runs"

    def test_empty_run_list(self, tmp_path):
        path = tmp_path / "X_SRRn"
        path.write_text("\n")
        with pytest.raises(ValueError, match="empty"):
            read_run_list(path)

    def test_pools_all_runs(self, tmp_path, run_list, index_dir):
        calls = []
        work = tmp_path / "work"
        with patch("rnapath.salmon.shutil.which", side_effect=_which), \
                patch("rnapath.salmon.subprocess.run", side_effect=_fake_tools(calls)):
            quant_dir = quantify_replicate(run_list, index_dir, threads=8, gibbs_samples=5, work_dir=work)

        assert quant_dir == work / "DMSO_1" / "salmon-quant"
        tools = [Path(cmd[0]).name for cmd, _ in calls]
        assert tools == ["prefetch", "fasterq-dump", "prefetch", "fasterq-dump", "salmon"]

        salmon = calls[-1][0]
        assert salmon[1] == "quant"
        assert salmon[salmon.index("-l") + 1] == "A"
        assert "--gcBias" in salmon
        assert salmon[salmon.index("--numGibbsSamples") + 1] == "5"
        r1 = salmon[salmon.index("-1") + 1:salmon.index("-2")]
        r2 = salmon[salmon.index("-2") + 1:]
        assert [Path(p).name for p in r1] == ["SRR100_1.fastq", "SRR101_1.fastq"]
        assert [Path(p).name for p in r2] == ["SRR100_2.fastq", "SRR101_2.fastq"]

        # FASTQs removed by default
        assert not list((work / "DMSO_1" / "fastq").glob("*.fastq"))

    def test_keep_fastq(self, tmp_path, run_list, index_dir):
        calls = []
        with patch("rnapath.salmon.shutil.which", side_effect=_which), \
                patch("rnapath.salmon.subprocess.run", side_effect=_fake_tools(calls)):
            quantify_replicate(run_list, index_dir, keep_fastq=True, work_dir=tmp_path)
        assert len(list((tmp_path / "DMSO_1" / "fastq").glob("*.fastq"))) == 4

    def test_tool_failure_propagates(self, tmp_path, run_list, index_dir):
        failure = subprocess.CalledProcessError(3, ["prefetch", "SRR100"])
        with patch("rnapath.salmon.shutil.which", side_effect=_which), \
                patch("rnapath.salmon.subprocess.run", side_effect=failure) as run:
            with pytest.raises(subprocess.CalledProcessError):
                quantify_replicate(run_list, index_dir, work_dir=tmp_path)
        run.assert_called_once()

    def test_missing_index(self, tmp_path, run_list):
        with pytest.raises(FileNotFoundError, match="index"):
            quantify_replicate(run_list, tmp_path / "nope", work_dir=tmp_path)
