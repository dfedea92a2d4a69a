"""
Shared, read-only test dataset.

The dataset is loaded once before the run and then shared by reference
across every virtual user.  Records are frozen into read-only mappings
so no VU can mutate data another VU depends on; lookups wrap around so
any VU id maps to a valid record regardless of how many VUs are alive.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence

import yaml

from load_harness.exceptions import DatasetError

logger = logging.getLogger(__name__)

DatasetRecord = Mapping[str, Any]


class Dataset:
    """Fixed-length, immutable sequence of records with modulo lookup."""

    __slots__ = ("_records", "name")

    def __init__(self, records: Sequence[Mapping[str, Any]], name: str = "dataset"):
        if not records:
            raise DatasetError("Dataset must contain at least one record", source=name)
        self._records: tuple[DatasetRecord, ...] = tuple(
            MappingProxyType(dict(record)) for record in records
        )
        self.name = name

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    def get(self, index: int) -> DatasetRecord:
        """Return the record at ``index mod len(dataset)``."""
        return self._records[index % len(self._records)]

    def for_vu(self, vu_id: int) -> DatasetRecord:
        """Return the record partitioned to VU ``vu_id`` (ids start at 1)."""
        return self.get(vu_id - 1)


def _read_source(path: Path) -> Any:
    """Parse a JSON or YAML file, mapping every failure onto DatasetError."""
    try:
        with path.open("r", encoding="utf-8") as handle:
            if path.suffix.lower() in (".yml", ".yaml"):
                return yaml.safe_load(handle)
            return json.load(handle)
    except OSError as exc:
        raise DatasetError(f"Cannot read dataset file: {exc}", source=str(path)) from exc
    except (ValueError, yaml.YAMLError) as exc:
        raise DatasetError(f"Dataset file is not valid: {exc}", source=str(path)) from exc


def load_dataset(path: str | Path, required_fields: Iterable[str] = ()) -> Dataset:
    """
    Load the dataset from a JSON or YAML file and validate it.

    The file must contain a non-empty list of objects.  When
    ``required_fields`` is given, every record must define each field.

    Args:
        path: Location of the ``.json`` / ``.yml`` / ``.yaml`` file.
        required_fields: Keys the workload reads from each record.

    Returns:
        The loaded :class:`Dataset`.

    Raises:
        DatasetError: If the file is unreadable, malformed, empty, or a
            record is not an object or lacks a required field.
    """
    source = Path(path)
    data = _read_source(source)

    if not isinstance(data, list):
        raise DatasetError("Dataset file must contain a list of records", source=str(source))
    if not data:
        raise DatasetError("Dataset file contains no records", source=str(source))

    required = tuple(required_fields)
    for position, record in enumerate(data):
        if not isinstance(record, dict):
            raise DatasetError(
                f"Record {position} is not an object: {record!r}", source=str(source)
            )
        missing = [name for name in required if name not in record]
        if missing:
            raise DatasetError(
                f"Record {position} is missing required fields: {', '.join(missing)}",
                source=str(source),
            )

    dataset = Dataset(data, name=source.stem)
    logger.info("Loaded dataset %s with %s records", source, len(dataset))
    return dataset
