"""HGNC-based Ensembl gene id to symbol/name annotation with local caching.

Downloads the HGNC complete gene set on first use and caches the
Ensembl -> (symbol, name) columns locally as TSV.
"""

import csv
import logging
import time
from dataclasses import replace
from functools import lru_cache
from io import StringIO
from pathlib import Path
from typing import Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import hgnc_cache_path
from .de_result import ContrastResult

logger = logging.getLogger(__name__)

# HGNC complete set download URL (TSV)
HGNC_DOWNLOAD_URL = (
    "https://ftp.ebi.ac.uk/pub/databases/genenames/hgnc/tsv/hgnc_complete_set.txt"
)

# Cache expiry: 30 days in seconds
CACHE_MAX_AGE_SECONDS = 30 * 24 * 60 * 60


def strip_version(gene_id: str) -> str:
    """``ENSG00000141510.17`` -> ``ENSG00000141510``."""
    return gene_id.split(".", 1)[0] if gene_id.startswith("ENS") else gene_id


def configure_session(timeout: int = 120) -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=2.0,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": "rnapath/0.1"})
    session.timeout = timeout
    return session


class GeneAnnotator:
    """Maps Ensembl gene ids to HGNC symbols and names.

    The HGNC table is loaded lazily and refreshed when the cache is older
    than 30 days. If the download fails, a stale cache is used; without any
    cache every lookup misses.

    Args:
        cache_path: Cache file. Defaults to ``~/.rnapath/hgnc_gene_annotation.tsv``,
            overridable via the ``RNAPATH_HGNC_CACHE`` environment variable.
        session: requests session used for the download.
    """

    def __init__(
        self,
        cache_path: Optional[Path] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._cache_path = Path(cache_path) if cache_path is not None else hgnc_cache_path()
        self._session = session
        self._ensembl_map: Optional[Dict[str, Tuple[str, str]]] = None

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def lookup(self, gene_id: str) -> Optional[Tuple[str, str]]:
        """(symbol, name) for an Ensembl gene id, or ``None`` when unknown."""
        return self.get_ensembl_map().get(strip_version(gene_id))

    def annotate(self, result: ContrastResult) -> ContrastResult:
        """Copy of ``result`` with symbol and name filled where known.

        Gene order and statistics are unchanged; misses keep ``symbol=None``.
        """
        mapping = self.get_ensembl_map()
        genes = []
        hits = 0
        for gene in result.genes:
            entry = mapping.get(strip_version(gene.gene_id))
            if entry is None:
                genes.append(gene)
                continue
            hits += 1
            genes.append(replace(gene, symbol=entry[0], name=entry[1]))
        logger.info(
            "%s: annotated %d of %d genes", result.name, hits, result.genes_tested
        )
        return result.with_genes(genes)

    def get_ensembl_map(self) -> Dict[str, Tuple[str, str]]:
        """Full Ensembl id -> (symbol, name) mapping, loading it on first access."""
        if self._ensembl_map is None:
            self._ensembl_map = self._load_or_download()
        return self._ensembl_map

    # -----------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------

    def _load_or_download(self) -> Dict[str, Tuple[str, str]]:
        if self._cache_is_valid():
            logger.info("Loading HGNC annotation from cache: %s", self._cache_path)
            return self._read_cache()

        logger.info("Downloading HGNC complete gene set...")
        try:
            mapping = self._download_and_parse()
            self._write_cache(mapping)
            logger.info("Cached %d Ensembl gene annotations to %s", len(mapping), self._cache_path)
            return mapping
        except (requests.RequestException, OSError, ValueError) as exc:
            logger.warning(
                "Failed to download HGNC data: %s. Genes will not be annotated.", exc
            )
            if self._cache_path.exists():
                logger.info("Falling back to stale cache")
                return self._read_cache()
            return {}

    def _cache_is_valid(self) -> bool:
        if not self._cache_path.exists():
            return False
        age = time.time() - self._cache_path.stat().st_mtime
        return age < CACHE_MAX_AGE_SECONDS

    def _download_and_parse(self) -> Dict[str, Tuple[str, str]]:
        session = self._session or configure_session()
        resp = session.get(HGNC_DOWNLOAD_URL, timeout=getattr(session, "timeout", 120))
        resp.raise_for_status()
        return parse_hgnc_table(resp.text)

    def _read_cache(self) -> Dict[str, Tuple[str, str]]:
        mapping: Dict[str, Tuple[str, str]] = {}
        with self._cache_path.open("r", encoding="utf-8") as fh:
            reader = csv.reader(fh, delimiter="\t")
            next(reader, None)  # header
            for row in reader:
                if len(row) >= 3:
                    mapping[row[0]] = (row[1], row[2])
        return mapping

    def _write_cache(self, mapping: Dict[str, Tuple[str, str]]) -> None:
        self._cache_path.parent.mkdir(parents=True, exist_ok=True)
        with self._cache_path.open("w", encoding="utf-8", newline="") as fh:
            writer = csv.writer(fh, delimiter="\t")
            writer.writerow(["ensembl_gene_id", "symbol", "name"])
            for ensembl_id, (symbol, name) in sorted(mapping.items()):
                writer.writerow([ensembl_id, symbol, name])


def parse_hgnc_table(text: str) -> Dict[str, Tuple[str, str]]:
    """Parse the HGNC complete set TSV into Ensembl id -> (symbol, name)."""
    reader = csv.DictReader(StringIO(text), delimiter="\t")
    if reader.fieldnames is None or "ensembl_gene_id" not in reader.fieldnames:
        raise ValueError("HGNC table has no 'ensembl_gene_id' column")

    mapping: Dict[str, Tuple[str, str]] = {}
    for row in reader:
        ensembl_id = (row.get("ensembl_gene_id") or "").strip()
        symbol = (row.get("symbol") or "").strip()
        if ensembl_id and symbol:
            mapping[ensembl_id] = (symbol, (row.get("name") or "").strip())
    return mapping


@lru_cache(maxsize=1)
def get_annotator() -> GeneAnnotator:
    """Process-wide annotator; the HGNC table is loaded at most once."""
    return GeneAnnotator()
