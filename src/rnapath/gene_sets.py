"""
Reference gene-set collections.

Gene sets are read from GMT files (one set per line: name, description,
then member genes, tab-separated), optionally gzip-compressed as
distributed by MSigDB. A collection is immutable and loaded once per
process per file; every enrichment run shares the same object.
"""

import gzip
import logging
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, Optional, Union

logger = logging.getLogger(__name__)


class GeneSetCollection(Mapping):
    """Read-only mapping of gene-set name -> frozenset of gene identifiers."""

    def __init__(
        self,
        sets: Mapping[str, Iterable[str]],
        descriptions: Optional[Mapping[str, str]] = None,
        source: str = "",
    ):
        self._sets = MappingProxyType({name: frozenset(genes) for name, genes in sets.items()})
        self._descriptions = MappingProxyType(dict(descriptions or {}))
        self.source = source

    def __getitem__(self, name: str) -> FrozenSet[str]:
        return self._sets[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._sets)

    def __len__(self) -> int:
        return len(self._sets)

    def description(self, name: str) -> str:
        return self._descriptions.get(name, "")

    @property
    def genes(self) -> FrozenSet[str]:
        """Union of all member genes."""
        members = set()
        for genes in self._sets.values():
            members.update(genes)
        return frozenset(members)

    def restricted_to(
        self,
        universe: Iterable[str],
        min_size: int = 1,
        max_size: int = 100_000,
    ) -> Dict[str, FrozenSet[str]]:
        """Sets intersected with ``universe``, keeping overlaps within [min_size, max_size]."""
        universe = set(universe)
        restricted = {}
        for name, genes in self._sets.items():
            overlap = genes & universe
            if min_size <= len(overlap) <= max_size:
                restricted[name] = frozenset(overlap)
        return restricted

    def merged_with(self, other: "GeneSetCollection") -> "GeneSetCollection":
        """A new collection holding both; names from ``other`` win on clashes."""
        sets = dict(self._sets)
        sets.update(other._sets)
        descriptions = dict(self._descriptions)
        descriptions.update(other._descriptions)
        source = ",".join(s for s in (self.source, other.source) if s)
        return GeneSetCollection(sets, descriptions, source=source)

    def __repr__(self) -> str:
        return f"GeneSetCollection({self.source or 'in-memory'}, sets={len(self)})"


def parse_gmt(lines: Iterable[str], source: str = "") -> GeneSetCollection:
    """Parse GMT lines into a collection.

    Blank lines are skipped. A line with fewer than three fields, or a
    repeated set name, aborts parsing.
    """
    sets: Dict[str, FrozenSet[str]] = {}
    descriptions: Dict[str, str] = {}
    for lineno, line in enumerate(lines, 1):
        line = line.rstrip("\r\n")
        if not line.strip():
            continue
        fields = line.split("\t")
        if len(fields) < 3:
            raise ValueError(f"{source or 'GMT'} line {lineno}: expected name, description and genes")
        name = fields[0].strip()
        if name in sets:
            raise ValueError(f"{source or 'GMT'} line {lineno}: duplicate gene set {name!r}")
        sets[name] = frozenset(g.strip() for g in fields[2:] if g.strip())
        descriptions[name] = fields[1].strip()
    return GeneSetCollection(sets, descriptions, source=source)


@lru_cache(maxsize=None)
def _load_gmt_cached(path: str) -> GeneSetCollection:
    p = Path(path)
    opener = gzip.open if p.suffix == ".gz" else open
    with opener(p, "rt", encoding="utf-8") as fh:
        collection = parse_gmt(fh, source=p.name)
    logger.info("Loaded %d gene sets from %s", len(collection), p)
    return collection


def load_gmt(path: Union[str, Path]) -> GeneSetCollection:
    """Load a (optionally gzipped) GMT file once per process.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Gene set file not found: {p}")
    return _load_gmt_cached(str(p.resolve()))


def load_gene_sets(paths: Iterable[Union[str, Path]]) -> GeneSetCollection:
    """Load and merge several GMT files into one collection."""
    collection = GeneSetCollection({})
    for path in paths:
        collection = collection.merged_with(load_gmt(path))
    return collection
