"""
Salmon index building and per-replicate quantification.

Thin wrappers around the ``salmon`` and SRA toolkit (``prefetch``,
``fasterq-dump``) command-line tools. Commands run synchronously with
``check=True``: a non-zero exit raises ``subprocess.CalledProcessError``
and nothing is retried.
"""

import gzip
import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Sequence, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Suffix of a run-list file name; "DMSO_1_SRRn" quantifies sample "DMSO_1"
RUN_LIST_SUFFIX = "_SRRn"


def _require_tool(name: str) -> str:
    path = shutil.which(name)
    if path is None:
        raise FileNotFoundError(f"Required executable not found on PATH: {name}")
    return path


def _run(cmd: Sequence[str], cwd: Union[PathLike, None] = None) -> None:
    logger.info("Running: %s", " ".join(str(c) for c in cmd))
    subprocess.run([str(c) for c in cmd], check=True, cwd=cwd)


def write_decoys(genome_fa: PathLike, decoys_path: PathLike) -> int:
    """Write sequence names from genome FASTA headers, one per line.

    Only the first whitespace-separated token of each header is kept.

    Returns:
        Number of decoy sequences written
    """
    genome_fa = Path(genome_fa)
    opener = gzip.open if genome_fa.suffix == ".gz" else open
    n = 0
    with opener(genome_fa, "rt") as fh, open(decoys_path, "w") as out:
        for line in fh:
            if line.startswith(">"):
                out.write(line[1:].split()[0] + "\n")
                n += 1
    return n


def build_gentrome(transcripts_fa: PathLike, genome_fa: PathLike, gentrome_path: PathLike) -> None:
    """Concatenate transcripts then genome, byte for byte.

    Both inputs must share the same compression; concatenated gzip members
    form a valid gzip stream.
    """
    with open(gentrome_path, "wb") as out:
        for src in (transcripts_fa, genome_fa):
            with open(src, "rb") as fh:
                shutil.copyfileobj(fh, out)


def build_index(
    transcripts_fa: PathLike,
    genome_fa: PathLike,
    index_dir: PathLike,
    threads: int = 12,
    gencode: bool = True,
) -> Path:
    """
    Build a decoy-aware Salmon index.

    Args:
        transcripts_fa: Transcript FASTA (e.g. ``gencode.v47.transcripts.fa.gz``)
        genome_fa: Genome FASTA used as decoy sequence
        index_dir: Output index directory
        threads: Threads for ``salmon index``
        gencode: Pass ``--gencode`` so transcript names are cut at the first ``|``

    Returns:
        Path to the index directory
    """
    transcripts_fa = Path(transcripts_fa)
    genome_fa = Path(genome_fa)
    for path in (transcripts_fa, genome_fa):
        if not path.exists():
            raise FileNotFoundError(f"FASTA file not found: {path}")
    salmon = _require_tool("salmon")

    index_dir = Path(index_dir)
    work_dir = index_dir.parent
    work_dir.mkdir(parents=True, exist_ok=True)

    decoys = work_dir / "decoys.txt"
    n_decoys = write_decoys(genome_fa, decoys)
    logger.info("Wrote %d decoy sequence names to %s", n_decoys, decoys)

    suffix = ".fa.gz" if transcripts_fa.suffix == ".gz" else ".fa"
    gentrome = work_dir / f"gentrome{suffix}"
    build_gentrome(transcripts_fa, genome_fa, gentrome)

    cmd = [
        salmon, "index",
        "-t", gentrome,
        "--decoys", decoys,
        "-i", index_dir,
        "-p", threads,
    ]
    if gencode:
        cmd.append("--gencode")
    _run(cmd)
    return index_dir


def read_run_list(run_list: PathLike) -> List[str]:
    """SRA run accessions, one per line; blank lines are ignored."""
    with open(run_list) as fh:
        runs = [line.strip() for line in fh if line.strip()]
    if not runs:
        raise ValueError(f"Run list is empty: {run_list}")
    return runs


def sample_name(run_list: PathLike) -> str:
    name = Path(run_list).name
    if name.endswith(RUN_LIST_SUFFIX):
        return name[: -len(RUN_LIST_SUFFIX)]
    return Path(name).stem


def quantify_replicate(
    run_list: PathLike,
    index_dir: PathLike,
    threads: int = 16,
    gibbs_samples: int = 20,
    keep_fastq: bool = False,
    work_dir: Union[PathLike, None] = None,
) -> Path:
    """
    Download all runs of one replicate and quantify them together.

    Every run in ``run_list`` is fetched with ``prefetch`` and converted to
    paired FASTQ with ``fasterq-dump``; a single ``salmon quant`` then pools
    all read pairs into one ``quant.sf``.

    Args:
        run_list: File of SRR accessions, named ``<sample>_SRRn``
        index_dir: Salmon index from ``build_index``
        threads: Threads for ``fasterq-dump`` and ``salmon quant``
        gibbs_samples: Number of Gibbs samples drawn by Salmon
        keep_fastq: Keep the (large) FASTQ files afterwards
        work_dir: Parent directory for the ``<sample>/`` output folder

    Returns:
        Path to ``<sample>/salmon-quant`` (holds ``quant.sf``)
    """
    runs = read_run_list(run_list)
    index_dir = Path(index_dir).resolve()
    if not index_dir.is_dir():
        raise FileNotFoundError(f"Salmon index not found: {index_dir}")

    prefetch = _require_tool("prefetch")
    fasterq_dump = _require_tool("fasterq-dump")
    salmon = _require_tool("salmon")

    sample_dir = Path(work_dir or ".") / sample_name(run_list)
    fastq_dir = sample_dir / "fastq"
    fastq_dir.mkdir(parents=True, exist_ok=True)
    shutil.copy(run_list, sample_dir / Path(run_list).name)

    for run in runs:
        logger.info("Downloading and converting SRA run %s", run)
        _run([prefetch, run, "-O", "fastq"], cwd=sample_dir)
        _run([fasterq_dump, run, "-e", threads, "-O", "fastq"], cwd=sample_dir)

    r1 = sorted(fastq_dir.glob("*_1.fastq"))
    r2 = sorted(fastq_dir.glob("*_2.fastq"))
    if not r1 or len(r1) != len(r2):
        raise ValueError(
            f"Expected paired FASTQ files in {fastq_dir}, found {len(r1)} R1 and {len(r2)} R2"
        )

    quant_dir = sample_dir / "salmon-quant"
    cmd = [
        salmon, "quant",
        "-i", index_dir,
        "-l", "A",
        "-p", threads,
        "--gcBias",
        "--numGibbsSamples", gibbs_samples,
        "-o", quant_dir,
        "-1", *r1,
        "-2", *r2,
    ]
    _run(cmd)

    if not keep_fastq:
        for fq in r1 + r2:
            fq.unlink()
        logger.info("Removed %d FASTQ files from %s", len(r1) + len(r2), fastq_dir)

    logger.info("Finished Salmon quantification for %s", sample_dir.name)
    return quant_dir
