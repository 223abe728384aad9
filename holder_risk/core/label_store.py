"""
Local address label dataset
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from holder_risk.core.exceptions import DataUnavailable
from holder_risk.core.logger import get_logger
from holder_risk.core.types import LabelRecord, LabelSourceKind, normalize_address

logger = get_logger(__name__)


class LabelStore:
    """
    Address -> LabelRecord mapping loaded once from a label dataset

    Rows are {wallet_address, owner_key, custody_owner, blockchain}. Rows with
    no address or with neither owner field are skipped. A later row for the
    same address replaces an earlier one.
    """

    def __init__(self, labels: Optional[Dict[str, LabelRecord]] = None):
        self._labels: Dict[str, LabelRecord] = dict(labels or {})

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "LabelStore":
        """
        Build a store from label dataset rows

        Raises:
            DataUnavailable: If records is not an iterable of mappings
        """
        if records is None or isinstance(records, (str, bytes, dict)):
            raise DataUnavailable("Label dataset must be a list of records")

        labels: Dict[str, LabelRecord] = {}
        skipped = 0

        for row in records:
            if not isinstance(row, dict):
                raise DataUnavailable(f"Label record is not a mapping: {row!r}")

            address = normalize_address(row.get("wallet_address") or "")
            owner_key = row.get("owner_key") or None
            custody_owner = row.get("custody_owner") or None

            if not address or not (owner_key or custody_owner):
                skipped += 1
                continue

            labels[address] = LabelRecord(
                owner_key=owner_key,
                custody_owner=custody_owner,
                blockchain=row.get("blockchain") or None,
                source=LabelSourceKind.LOCAL,
            )

        logger.info("label_store_loaded", labels=len(labels), skipped=skipped)
        return cls(labels)

    @classmethod
    def load(cls, path: str) -> "LabelStore":
        """
        Load a JSON label dataset file

        Raises:
            DataUnavailable: If the file is missing or not valid JSON
        """
        file_path = Path(path)
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                records = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DataUnavailable(f"Cannot read label dataset {file_path}: {e}") from e

        return cls.from_records(records)

    def get(self, address: str) -> Optional[LabelRecord]:
        """Exact match on the normalized address"""
        return self._labels.get(normalize_address(address))

    def __contains__(self, address: str) -> bool:
        return normalize_address(address) in self._labels

    def __len__(self) -> int:
        return len(self._labels)
