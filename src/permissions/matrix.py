"""Permission matrix value types.

AllowMatrix is dense (every module/action pair has a value, missing = False);
DenyMatrix is sparse (only denied cells exist, absence = inherit). Both are
frozen: every edit returns a new value, so a stored matrix can be swapped
atomically while readers keep using the one they already hold.

Wire forms:
    AllowMatrix  {"WIR": {"view": true, "raise": false, ...}, ...}  (65 cells)
    DenyMatrix   {"MIR": {"close": "deny"}}                        (sparse)
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any

from src.permissions.registry import (
    Action,
    ModuleCode,
    is_locked_cell,
    parse_action,
    parse_module,
)
from src.shared.errors import ValidationError

Cell = tuple[ModuleCode, Action]


@unique
class DenyValue(Enum):
    """Value of one user-override cell."""

    INHERIT = "inherit"
    DENY = "deny"


def parse_deny_value(value: DenyValue | str) -> DenyValue:
    if isinstance(value, DenyValue):
        return value
    try:
        return DenyValue(value)
    except ValueError as exc:
        raise ValidationError(
            f"Override value must be 'inherit' or 'deny', got {value!r}",
            field="value",
        ) from exc


def iter_cells() -> Iterator[Cell]:
    """Yield all 65 module/action pairs in declaration order."""
    for module in ModuleCode:
        for action in Action:
            yield module, action


def _require_mapping(data: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        msg = f"{field_name} must be an object, got {type(data).__name__}"
        raise ValidationError(msg, field=field_name)
    return data


def _parse_module_key(key: Any) -> ModuleCode:
    try:
        return parse_module(key)
    except ValidationError as exc:
        raise ValidationError(str(exc), field=f"matrix.{key}") from exc


def _parse_action_key(module: ModuleCode, key: Any) -> Action:
    try:
        return parse_action(key)
    except ValidationError as exc:
        raise ValidationError(str(exc), field=f"matrix.{module.value}.{key}") from exc


@dataclass(frozen=True)
class AllowMatrix:
    """Dense allow-matrix: the set of granted cells.

    Locked cells (LTR review/approve) are dropped on construction, so no
    AllowMatrix value can ever grant them.
    """

    allowed: frozenset[Cell] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        cleaned = frozenset(cell for cell in self.allowed if not is_locked_cell(*cell))
        if cleaned != self.allowed:
            object.__setattr__(self, "allowed", cleaned)

    @classmethod
    def empty(cls) -> AllowMatrix:
        """The all-false matrix."""
        return cls()

    @classmethod
    def from_cells(cls, cells: Iterable[Cell]) -> AllowMatrix:
        return cls(frozenset(cells))

    @classmethod
    def from_wire(cls, data: Any) -> AllowMatrix:
        """Parse the JSON wire form.

        Unknown module or action keys and non-boolean values raise
        ValidationError. Missing cells are False. A True on a locked cell
        is accepted and coerced to False.
        """
        rows = _require_mapping(data, "matrix")
        allowed: set[Cell] = set()
        for module_key, row in rows.items():
            module = _parse_module_key(module_key)
            actions = _require_mapping(row, f"matrix.{module.value}")
            for action_key, value in actions.items():
                action = _parse_action_key(module, action_key)
                if not isinstance(value, bool):
                    msg = (
                        f"matrix.{module.value}.{action.value} must be a boolean, "
                        f"got {value!r}"
                    )
                    raise ValidationError(msg, field=f"matrix.{module.value}.{action.value}")
                if value:
                    allowed.add((module, action))
        return cls(frozenset(allowed))

    def is_allowed(self, module: ModuleCode, action: Action) -> bool:
        return (module, action) in self.allowed

    def with_cell(self, module: ModuleCode, action: Action, value: bool) -> AllowMatrix:
        """Return a copy with one cell changed."""
        if value:
            return AllowMatrix(self.allowed | {(module, action)})
        return AllowMatrix(self.allowed - {(module, action)})

    def without(self, cells: Iterable[Cell]) -> AllowMatrix:
        """Return a copy with the given cells revoked."""
        return AllowMatrix(self.allowed - frozenset(cells))

    def to_wire(self) -> dict[str, dict[str, bool]]:
        return {
            module.value: {action.value: (module, action) in self.allowed for action in Action}
            for module in ModuleCode
        }


@dataclass(frozen=True)
class DenyMatrix:
    """Sparse deny-only matrix: the set of revoked cells.

    Locked cells are rejected outright, since denying a cell that can
    never be granted means the caller misunderstands the grid.
    """

    denied: frozenset[Cell] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        for module, action in self.denied:
            if is_locked_cell(module, action):
                msg = f"{module.value}.{action.value} is always denied and cannot be overridden"
                raise ValidationError(msg, field=f"matrix.{module.value}.{action.value}")

    @classmethod
    def empty(cls) -> DenyMatrix:
        return cls()

    @classmethod
    def from_wire(cls, data: Any) -> DenyMatrix:
        """Parse the sparse wire form. Only the literal "deny" is accepted."""
        rows = _require_mapping(data, "matrix")
        denied: set[Cell] = set()
        for module_key, row in rows.items():
            module = _parse_module_key(module_key)
            actions = _require_mapping(row, f"matrix.{module.value}")
            for action_key, value in actions.items():
                action = _parse_action_key(module, action_key)
                if value != DenyValue.DENY.value:
                    msg = (
                        f"matrix.{module.value}.{action.value} must be 'deny' "
                        f"(omit the key to inherit), got {value!r}"
                    )
                    raise ValidationError(msg, field=f"matrix.{module.value}.{action.value}")
                denied.add((module, action))
        return cls(frozenset(denied))

    def __len__(self) -> int:
        return len(self.denied)

    def is_denied(self, module: ModuleCode, action: Action) -> bool:
        return (module, action) in self.denied

    def with_cell(self, module: ModuleCode, action: Action, value: DenyValue) -> DenyMatrix:
        """Return a copy with one cell set to deny or cleared back to inherit."""
        if value is DenyValue.DENY:
            return DenyMatrix(self.denied | {(module, action)})
        return DenyMatrix(self.denied - {(module, action)})

    def apply(self, base: AllowMatrix) -> AllowMatrix:
        """Subtract the denied cells from a base allow-matrix."""
        return base.without(self.denied)

    def to_wire(self) -> dict[str, dict[str, str]]:
        # Modules without a denied action never appear.
        out: dict[str, dict[str, str]] = {}
        for module, action in iter_cells():
            if (module, action) in self.denied:
                out.setdefault(module.value, {})[action.value] = DenyValue.DENY.value
        return out


def as_allow_matrix(value: AllowMatrix | Mapping[str, Any]) -> AllowMatrix:
    """Accept an AllowMatrix or its wire form."""
    if isinstance(value, AllowMatrix):
        return value
    return AllowMatrix.from_wire(value)


def as_deny_matrix(value: DenyMatrix | Mapping[str, Any]) -> DenyMatrix:
    """Accept a DenyMatrix or its wire form."""
    if isinstance(value, DenyMatrix):
        return value
    return DenyMatrix.from_wire(value)
