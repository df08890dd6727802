"""Closed enumerations for the permission engine.

- 13 module codes, 5 actions, 6 role keys
- Every store and resolver API validates its keys here
- The Letters lock (LTR cannot be reviewed or approved) is defined once,
  in is_locked_cell(), and every layer consults it

Wire strings are free-form JSON at the edges, so parse_* raise
ValidationError instead of returning None.
"""

from __future__ import annotations

from enum import Enum, unique

from src.shared.errors import ValidationError


@unique
class ModuleCode(Enum):
    """Functional areas permissions are scoped to."""

    WIR = "WIR"
    MIR = "MIR"
    CS = "CS"
    DPR = "DPR"
    MIP = "MIP"
    DS = "DS"
    RFC = "RFC"
    OBS = "OBS"
    DLP = "DLP"
    LTR = "LTR"
    FDB = "FDB"
    MAITRI = "MAITRI"
    DASHBOARD = "DASHBOARD"


@unique
class Action(Enum):
    """Operations performable within a module."""

    VIEW = "view"
    RAISE = "raise"
    REVIEW = "review"
    APPROVE = "approve"
    CLOSE = "close"


@unique
class RoleKey(Enum):
    """Project roles that carry a permission template.

    The value is the wire spelling; the member name is the storage spelling
    (only IH-PMT differs).
    """

    CLIENT = "Client"
    IH_PMT = "IH-PMT"
    CONTRACTOR = "Contractor"
    CONSULTANT = "Consultant"
    PMC = "PMC"
    SUPPLIER = "Supplier"


MODULE_LABELS: dict[ModuleCode, str] = {
    ModuleCode.WIR: "WIR (Work Inspection Request)",
    ModuleCode.MIR: "MIR (Material Inspection Request)",
    ModuleCode.CS: "CS (Contractor's Submittal)",
    ModuleCode.DPR: "DPR (Daily Progress Report)",
    ModuleCode.MIP: "MIP (Implementation Plan)",
    ModuleCode.DS: "DS (Design Submittal)",
    ModuleCode.RFC: "RFC (Request For Clarification)",
    ModuleCode.OBS: "OBS (Site Observation and NCR/CAR)",
    ModuleCode.DLP: "DLP",
    ModuleCode.LTR: "LTR (Letter)",
    ModuleCode.FDB: "FDB (Feedback)",
    ModuleCode.MAITRI: "MAITRI",
    ModuleCode.DASHBOARD: "DASHBOARD",
}

# Cells that are false at every layer, unconditionally.
LOCKED_CELLS: frozenset[tuple[ModuleCode, Action]] = frozenset(
    {
        (ModuleCode.LTR, Action.REVIEW),
        (ModuleCode.LTR, Action.APPROVE),
    }
)

_ROLE_BY_NAME = {role.name: role for role in RoleKey}


def is_locked_cell(module: ModuleCode, action: Action) -> bool:
    """Return True for cells that can never be granted."""
    return (module, action) in LOCKED_CELLS


def is_valid_module(value: str) -> bool:
    return isinstance(value, str) and value in ModuleCode._value2member_map_


def is_valid_action(value: str) -> bool:
    return isinstance(value, str) and value in Action._value2member_map_


def is_valid_role(value: str) -> bool:
    if not isinstance(value, str):
        return False
    return value in RoleKey._value2member_map_ or value in _ROLE_BY_NAME


def parse_module(value: ModuleCode | str) -> ModuleCode:
    """Parse a module code. Raises ValidationError for unknown keys."""
    if isinstance(value, ModuleCode):
        return value
    try:
        return ModuleCode(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown module code: {value!r}", field="module") from exc


def parse_action(value: Action | str) -> Action:
    """Parse an action key. Raises ValidationError for unknown keys."""
    if isinstance(value, Action):
        return value
    try:
        return Action(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown action: {value!r}", field="action") from exc


def parse_role(value: RoleKey | str) -> RoleKey:
    """Parse a role key from its wire ("IH-PMT") or storage ("IH_PMT") form."""
    if isinstance(value, RoleKey):
        return value
    if isinstance(value, str):
        if value in RoleKey._value2member_map_:
            return RoleKey(value)
        if value in _ROLE_BY_NAME:
            return _ROLE_BY_NAME[value]
    raise ValidationError(f"Unknown role: {value!r}", field="role")
