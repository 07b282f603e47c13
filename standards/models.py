"""
standards/models.py -- Domain dataclasses for reference standards.

Pure data containers with zero logic. All persistence lives in
standards/store.py.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ReferenceRule:
    """One acceptance criterion for a sample parameter.

    condition_type decides which of the value fields matter:
      MAX / MIN   -> max_value / min_value
      RANGE       -> both
      EXACT_TEXT  -> expected_text
      ABSENCE     -> expected_text is an optional extra keyword
    """

    parameter_key: str
    condition_type: str
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    expected_text: Optional[str] = None
    display_reference: Optional[str] = None
    id: Optional[int] = None
    standard_id: Optional[int] = None


@dataclass
class ReferenceStandard:
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True
    id: Optional[int] = None
    created_at: str = ""
    rules: list[ReferenceRule] = field(default_factory=list)
