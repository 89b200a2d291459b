# titanic_workbench/repair.py
"""
Shifted-Row Repair for Titanic CSV Exports.

Some broken exports of the Titanic CSV lose the quoting around the Name field
("Braund, Mr. Owen Harris"). A lenient parser then splits the name on its
comma and every following field lands one column to the right:

    Name     -> '"Braund'
    Sex      -> ' Mr. Owen Harris"'
    Age      -> 'male'
    SibSp    -> 22
    ...
    Cabin    -> 7.25
    Embarked -> None, with 'S' pushed into the overflow collection

This module detects exactly that pattern and shifts the fields back. It is a
narrow, single-pattern heuristic and not a general CSV validator: rows that
are corrupted in any other way pass through unchanged.

Usage Example:
    from titanic_workbench.repair import repair_rows

    rows = repair_rows(normalized_rows)
"""

# Standard library imports
import logging
import math
import re
from typing import Any, Dict, List, Optional

# Local imports
from titanic_workbench.errors import RepairFailure

logger = logging.getLogger(__name__)

# Key under which the CSV reader stores tokens beyond the header width
OVERFLOW_KEY = "__parsed_extra"

_SEX_RE = re.compile(r"^(male|female)$", re.IGNORECASE)
_LEADING_QUOTES_RE = re.compile(r'^\s*"+')
_TRAILING_QUOTES_RE = re.compile(r'"+\s*$')


# ============================================================================
# FIELD HELPERS
# ============================================================================

def is_good_sex(value: Any) -> bool:
    """True if value is the string 'male' or 'female' (any case, padded ok)."""
    return isinstance(value, str) and bool(_SEX_RE.match(value.strip()))


def num_or_none(value: Any) -> Optional[float]:
    """
    Parse value as a finite number, returning None when that fails.

    Example:
        >>> num_or_none("22")
        22.0
        >>> num_or_none("A/5 21171") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        x = float(value)
    except (TypeError, ValueError):
        return None
    return x if math.isfinite(x) else None


def strip_quotes(value: Any) -> Any:
    """Remove leading and trailing double quotes (and surrounding blanks)."""
    if not isinstance(value, str):
        return value
    return _TRAILING_QUOTES_RE.sub("", _LEADING_QUOTES_RE.sub("", value))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ============================================================================
# DETECTION AND REPAIR
# ============================================================================

def looks_shifted(row: Dict[str, Any]) -> bool:
    """
    Detect the split-name corruption.

    A row is shifted when its Sex field is not male/female while its Age
    field is a string that is exactly male/female.
    """
    age = row.get("Age")
    age_looks_sex = isinstance(age, str) and bool(_SEX_RE.match(age.strip()))
    return not is_good_sex(row.get("Sex")) and age_looks_sex


def repair_shifted_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Repair one shifted row, returning a new dict (the input is not modified).

    Steps:
        1. Name  <- "<Name>, <Sex slot>" with quotes stripped from both pieces
        2. Sex   <- Age slot (trimmed)
        3. Age   <- SibSp slot, SibSp <- Parch slot, Parch <- Ticket slot
        4. Ticket <- Fare slot (as text), Fare <- Cabin slot
        5. Embarked <- last overflow token, if any; overflow is dropped

    Raises:
        RepairFailure: If a field cannot be converted
    """
    r = dict(row)
    try:
        left = strip_quotes(_as_text(r.get("Name")))
        right = strip_quotes(_as_text(r.get("Sex")))
        if left and right:
            r["Name"] = f"{left}, {right}"
        else:
            r["Name"] = left or right

        r["Sex"] = _as_text(r.get("Age")).strip()
        r["Age"] = num_or_none(r.get("SibSp"))
        r["SibSp"] = num_or_none(r.get("Parch"))
        r["Parch"] = num_or_none(r.get("Ticket"))
        r["Ticket"] = _as_text(r.get("Fare"))
        r["Fare"] = num_or_none(r.get("Cabin"))

        extra = r.pop(OVERFLOW_KEY, None)
        if isinstance(extra, (list, tuple)) and extra:
            r["Embarked"] = extra[-1]
    except Exception as e:
        raise RepairFailure(f"Could not repair row {row.get('PassengerId')!r}: {e}") from e

    return r


def repair_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Repair every shifted row in a batch and strip overflow from the rest.

    A row whose repair fails falls back to the plain cleanup path; one odd row
    never stops a batch from loading.

    Returns:
        New list of new dicts, same length and order as the input
    """
    out: List[Dict[str, Any]] = []
    repaired = 0

    for row in rows:
        if looks_shifted(row):
            try:
                out.append(repair_shifted_row(row))
                repaired += 1
                continue
            except RepairFailure as e:
                logger.warning(f"{e}; keeping row unrepaired")

        r = dict(row)
        r.pop(OVERFLOW_KEY, None)
        out.append(r)

    if repaired:
        logger.info(f"Repaired {repaired} shifted row(s) out of {len(rows)}")
    return out
