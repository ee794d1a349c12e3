"""
Sample metadata for the experiment.

A ``SampleSheet`` maps every sample to exactly one (condition, batch) pair
and carries the reference condition used by all contrasts. It is built once
from a tab-separated table and not modified afterwards.

Expected table layout (extra columns are ignored)::

    sample_id    condition    batch
    DMSO_1       DMSO         1
    DMSO_2       DMSO         2
    CPD_A_1      CPD_A        1
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple, Union

import pandas as pd

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("sample_id", "condition", "batch")


@dataclass(frozen=True)
class SampleRecord:
    """One sequenced sample."""

    sample_id: str
    condition: str
    batch: str


@dataclass(frozen=True)
class SampleSheet:
    """Immutable sample-to-condition/batch mapping with a fixed reference."""

    records: Tuple[SampleRecord, ...]
    reference: str

    def __post_init__(self):
        ids = [r.sample_id for r in self.records]
        duplicated = sorted({s for s in ids if ids.count(s) > 1})
        if duplicated:
            raise ValueError(f"Duplicate sample ids in sample sheet: {', '.join(duplicated)}")
        if not self.records:
            raise ValueError("Sample sheet is empty")
        if self.reference not in self.conditions:
            raise ValueError(
                f"Reference condition {self.reference!r} not found; "
                f"available conditions: {', '.join(self.conditions)}"
            )

    @classmethod
    def from_frame(cls, df: pd.DataFrame, reference: str) -> "SampleSheet":
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Sample sheet is missing columns: {', '.join(missing)}")

        required = df[list(REQUIRED_COLUMNS)]
        blank = required.isna() | (required.astype(str).apply(lambda col: col.str.strip()) == "")
        rows = blank.any(axis=1).tolist()
        if any(rows):
            labels = [
                f"row {i + 1}" if is_blank else str(sample_id)
                for i, (sample_id, is_blank, bad) in enumerate(
                    zip(df["sample_id"], blank["sample_id"], rows)
                )
                if bad
            ]
            raise ValueError(
                "Sample sheet has blank sample_id, condition or batch values for: "
                f"{', '.join(labels)}"
            )

        records = tuple(
            SampleRecord(
                sample_id=str(row.sample_id),
                condition=str(row.condition),
                batch=str(row.batch),
            )
            for row in df[list(REQUIRED_COLUMNS)].itertuples(index=False)
        )
        return cls(records=records, reference=reference)

    @property
    def sample_ids(self) -> List[str]:
        return [r.sample_id for r in self.records]

    @property
    def conditions(self) -> List[str]:
        """Distinct conditions in order of first appearance."""
        return list(dict.fromkeys(r.condition for r in self.records))

    @property
    def treatments(self) -> List[str]:
        """Non-reference conditions, one contrast each."""
        return [c for c in self.conditions if c != self.reference]

    @property
    def batches(self) -> List[str]:
        return list(dict.fromkeys(r.batch for r in self.records))

    def samples_for(self, condition: str) -> List[str]:
        return [r.sample_id for r in self.records if r.condition == condition]

    def condition_of(self) -> Dict[str, str]:
        return {r.sample_id: r.condition for r in self.records}

    def to_frame(self) -> pd.DataFrame:
        """Model metadata indexed by sample id.

        ``condition`` is an ordered categorical with the reference as its
        first level so the fitted design uses it as the baseline.
        """
        levels = [self.reference] + self.treatments
        df = pd.DataFrame(
            {
                "condition": [r.condition for r in self.records],
                "batch": [r.batch for r in self.records],
            },
            index=pd.Index(self.sample_ids, name="sample_id"),
        )
        df["condition"] = pd.Categorical(df["condition"], categories=levels)
        df["batch"] = pd.Categorical(df["batch"], categories=self.batches)
        return df

    def __len__(self) -> int:
        return len(self.records)


def load_sample_sheet(path: Union[str, Path], reference: str) -> SampleSheet:
    """Read a tab-separated sample table.

    Args:
        path: TSV with at least ``sample_id``, ``condition`` and ``batch``.
        reference: Control condition label every contrast is compared to.

    Returns:
        SampleSheet

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On missing columns, duplicate ids or unknown reference.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sample sheet not found: {path}")

    df = pd.read_csv(path, sep="\t", dtype=str)
    sheet = SampleSheet.from_frame(df, reference=reference)
    logger.info(
        "Loaded %d samples (%d conditions, %d batches) from %s",
        len(sheet),
        len(sheet.conditions),
        len(sheet.batches),
        path,
    )
    return sheet
