from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FieldChange:
    session_id: str
    field: str
    old_value: Any
    new_value: Any
    timestamp: float
