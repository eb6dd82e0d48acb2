"""
Lineage Validator — allowed parent → child type pairs.

Hierarchy (one level down only):

    objective  → strategy
    strategy   → initiative
    initiative → task
    task       → subtask
    subtask    → (none)

Pure and stateless: the table is an immutable mapping, so the functions
are safe to call from any number of request threads.

Usage:
    from workitems.services.lineage_validator import validate

    result = validate("task", "strategy")
    result.valid    # False
    result.errors   # ["task cannot contain strategy"]
"""

from types import MappingProxyType
from typing import NamedTuple

from workitems.models.work_item import WORK_ITEM_TYPES

HIERARCHY = MappingProxyType({
    "objective": ("strategy",),
    "strategy": ("initiative",),
    "initiative": ("task",),
    "task": ("subtask",),
    "subtask": (),
})

TOP_LEVEL_TYPE = "objective"


class LineageValidationResult(NamedTuple):
    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


def validate(parent_type: str, child_type: str) -> LineageValidationResult:
    """Check whether ``parent_type`` may directly contain ``child_type``.

    Total over any pair of strings: unknown names are reported as invalid,
    never raised.
    """
    if parent_type not in HIERARCHY or child_type not in WORK_ITEM_TYPES:
        return LineageValidationResult(
            valid=False,
            errors=(f"{parent_type} cannot contain {child_type}: unknown work item type",),
        )
    if child_type not in HIERARCHY[parent_type]:
        return LineageValidationResult(
            valid=False,
            errors=(f"{parent_type} cannot contain {child_type}",),
        )
    return LineageValidationResult(valid=True)


def allowed_children(parent_type: str) -> tuple[str, ...]:
    """Types that may sit directly under ``parent_type`` (empty for leaves and unknowns)."""
    return HIERARCHY.get(parent_type, ())


def is_top_level(work_item_type: str) -> bool:
    return work_item_type == TOP_LEVEL_TYPE
