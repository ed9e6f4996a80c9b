"""Narrators migrator: the fixed set of narrators meditations refer to by index."""

from typing import Any, List, Optional

from .base import BaseMigrator
from ..extractors.base import Row
from ..models.record import TargetRecord, ValidationRule

NARRATOR_NAMES = {
    "male": "Male Narrator",
    "female": "Female Narrator",
}


class NarratorsMigrator(BaseMigrator):
    """
    Creates one narrator per configured narrator index.

    The legacy data stores the narrator as a bare index on each meditation,
    so there is no source table; the rows come from ``narrator_variants``.
    """

    source_table = ""
    target_collection = "narrators"

    def get_validation_rules(self) -> List[ValidationRule]:
        return [
            ValidationRule(field="name", required=True, type="string"),
            ValidationRule(field="gender", required=True, pattern=r"^(male|female)$"),
        ]

    def narrator_rows(self) -> List[Row]:
        return [
            {"index": index, "gender": gender}
            for index, gender in sorted(self.config.narrator_variants.items())
        ]

    def count_rows(self) -> int:
        return len(self.narrator_rows())

    def fetch_rows(self, offset: int, limit: int) -> List[Row]:
        return self.narrator_rows()[offset:offset + limit]

    def source_key(self, row: Row) -> Any:
        return row["index"]

    def transform_row(self, row: Row) -> Optional[TargetRecord]:
        gender = row["gender"]
        name = NARRATOR_NAMES.get(gender, f"{gender.title()} Narrator")
        return TargetRecord(
            collection=self.get_target_collection(),
            source_key=row["index"],
            data={"name": name, "gender": gender},
            natural_key={"name": name},
        )
