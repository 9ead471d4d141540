"""
DataRow -- one committed import row as seen by engines.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DataRow:
    """
    One committed row.  ``entity_id`` None marks a group-level row that is
    attributed to entities through the population's group key.
    """

    row_id: str
    data_type: str
    entity_id: str | None
    row_data: dict[str, Any]
    semantic_roles: dict[str, str] = field(default_factory=dict)

    @property
    def is_group_level(self) -> bool:
        return self.entity_id is None
