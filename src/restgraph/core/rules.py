"""
Declarative validation constraints and the validator that executes them.

A rule set is a flat mapping from dotted paths to ordered constraint lists.
Paths may contain ``*`` segments which expand over list items (or dict keys):

    {
        "filters": [Sometimes(), IsList()],
        "filters.*.field": [RequiredWithout("nested"), IsString(), In(["id", "name"])],
        "filters.*.nested": [Sometimes(), IsList(), Prohibits(["field", "operator", "value"])],
    }

Sibling references (``RequiredWithout("nested")``) are resolved against the
object holding the attribute being validated.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Optional

RuleSet = dict[str, list["Constraint"]]

_MISSING = object()


class Constraint:
    """Base class for a single constraint."""

    # Presence constraints are evaluated even when the attribute is absent
    presence = False

    def check(self, attribute: "Attribute") -> Optional[str]:
        raise NotImplementedError


class CustomRule(Constraint):
    """
    Constraint backed by arbitrary code.

    Subclasses return a list of messages. Messages that already contain a
    path (``"filters.0.field: ..."``) are kept verbatim by ``nested_errors``.
    """

    def validate(self, value: Any, path: str) -> list[str]:
        raise NotImplementedError

    def check(self, attribute: "Attribute") -> Optional[str]:
        # CustomRule is dispatched by RuleValidator directly
        raise NotImplementedError


@dataclass
class Attribute:
    """A concrete attribute resolved from a wildcard path."""
    path: str
    parent: Optional[dict]
    key: Any
    value: Any = _MISSING

    @property
    def present(self) -> bool:
        return self.value is not _MISSING

    def sibling(self, name: str) -> Any:
        if not isinstance(self.parent, dict):
            return _MISSING
        return self.parent.get(name, _MISSING)


def _filled(value: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    if isinstance(value, str) and value.strip() == "":
        return False
    if isinstance(value, (list, dict)) and not value:
        return False
    return True


@dataclass(frozen=True)
class Sometimes(Constraint):
    """Skip the remaining constraints when the attribute is absent."""
    presence = True

    def check(self, attribute: Attribute) -> Optional[str]:
        return None


@dataclass(frozen=True)
class Required(Constraint):
    presence = True

    def check(self, attribute: Attribute) -> Optional[str]:
        if not _filled(attribute.value):
            return "is required"
        return None


@dataclass(frozen=True)
class Prohibited(Constraint):
    presence = True

    def check(self, attribute: Attribute) -> Optional[str]:
        if attribute.present:
            return "is prohibited"
        return None


@dataclass(frozen=True)
class RequiredWithout(Constraint):
    """Required when the sibling attribute is absent."""
    other: str
    presence = True

    def check(self, attribute: Attribute) -> Optional[str]:
        if not _filled(attribute.sibling(self.other)) and not _filled(attribute.value):
            return f"is required when '{self.other}' is not present"
        return None


@dataclass(frozen=True)
class RequiredIf(Constraint):
    """Required when the sibling attribute holds one of ``values``."""
    other: str
    values: tuple
    presence = True

    def check(self, attribute: Attribute) -> Optional[str]:
        if attribute.sibling(self.other) in self.values and not _filled(attribute.value):
            return f"is required when '{self.other}' is {attribute.sibling(self.other)}"
        return None


@dataclass(frozen=True)
class ProhibitedIf(Constraint):
    """Prohibited when the sibling attribute holds one of ``values``."""
    other: str
    values: tuple
    presence = True

    def check(self, attribute: Attribute) -> Optional[str]:
        if attribute.present and attribute.sibling(self.other) in self.values:
            return f"is prohibited when '{self.other}' is {attribute.sibling(self.other)}"
        return None


@dataclass(frozen=True)
class Prohibits(Constraint):
    """When present, none of the sibling attributes may be present."""
    others: tuple
    presence = True

    def check(self, attribute: Attribute) -> Optional[str]:
        if not attribute.present:
            return None
        clashing = [name for name in self.others if attribute.sibling(name) is not _MISSING]
        if clashing:
            return f"prohibits {', '.join(clashing)} from being present"
        return None


@dataclass(frozen=True)
class IsList(Constraint):
    def check(self, attribute: Attribute) -> Optional[str]:
        if not isinstance(attribute.value, list):
            return "must be an array"
        return None


@dataclass(frozen=True)
class IsDict(Constraint):
    def check(self, attribute: Attribute) -> Optional[str]:
        if not isinstance(attribute.value, dict):
            return "must be an object"
        return None


@dataclass(frozen=True)
class IsString(Constraint):
    def check(self, attribute: Attribute) -> Optional[str]:
        if not isinstance(attribute.value, str):
            return "must be a string"
        return None


@dataclass(frozen=True)
class IsInteger(Constraint):
    def check(self, attribute: Attribute) -> Optional[str]:
        value = attribute.value
        if isinstance(value, bool) or not isinstance(value, int):
            return "must be an integer"
        return None


@dataclass(frozen=True)
class In(Constraint):
    values: tuple

    def check(self, attribute: Attribute) -> Optional[str]:
        try:
            allowed = attribute.value in self.values
        except TypeError:
            allowed = False
        if not allowed:
            return f"value {attribute.value!r} is not allowed"
        return None


@dataclass(frozen=True)
class Min(Constraint):
    minimum: int

    def check(self, attribute: Attribute) -> Optional[str]:
        value = attribute.value
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value < self.minimum:
            return f"must be at least {self.minimum}"
        return None


@dataclass(frozen=True)
class MaxItems(Constraint):
    maximum: int

    def check(self, attribute: Attribute) -> Optional[str]:
        if isinstance(attribute.value, list) and len(attribute.value) > self.maximum:
            return f"must not contain more than {self.maximum} item(s)"
        return None


def merge_rules(rules: RuleSet, other: RuleSet) -> RuleSet:
    """Merge ``other`` into ``rules``, appending constraints not already listed."""
    for path, constraints in other.items():
        current = rules.setdefault(path, [])
        for constraint in constraints:
            if constraint not in current:
                current.append(constraint)
    return rules


def expand(data: Any, pattern: str) -> Iterator[Attribute]:
    """
    Resolve a wildcard path against ``data``.

    Yields one Attribute per concrete path. Wildcards only expand over
    existing containers; a missing intermediate value stops expansion.
    """
    parts = pattern.split(".") if pattern else []
    if not parts:
        yield Attribute(path="", parent=None, key=None, value=data)
        return
    yield from _expand(data, parts, [])


def _expand(current: Any, parts: list[str], trail: list[str]) -> Iterator[Attribute]:
    head, rest = parts[0], parts[1:]

    if head == "*":
        if isinstance(current, list):
            items = list(enumerate(current))
        elif isinstance(current, dict):
            items = list(current.items())
        else:
            return
        for key, value in items:
            if rest:
                yield from _expand(value, rest, trail + [str(key)])
            else:
                yield Attribute(path=".".join(trail + [str(key)]), parent=None, key=key, value=value)
        return

    if not isinstance(current, dict):
        return

    value = current.get(head, _MISSING)
    if not rest:
        yield Attribute(path=".".join(trail + [head]), parent=current, key=head, value=value)
        return
    if value is _MISSING:
        return
    yield from _expand(value, rest, trail + [head])


class RuleValidator:
    """
    Executes a rule set against a payload.

    Usage:
        validator = RuleValidator(rules)
        errors = validator.errors(payload)
    """

    def __init__(self, rules: RuleSet):
        self.rules = rules

    def errors(self, data: Any) -> list[str]:
        messages: list[str] = []
        for pattern, constraints in self.rules.items():
            for attribute in expand(data, pattern):
                messages.extend(self._check(attribute, constraints))
        return messages

    def _check(self, attribute: Attribute, constraints: list[Constraint]) -> list[str]:
        if not attribute.present and any(isinstance(c, Sometimes) for c in constraints):
            return []

        messages: list[str] = []
        for constraint in constraints:
            if isinstance(constraint, CustomRule):
                if attribute.present:
                    messages.extend(constraint.validate(attribute.value, attribute.path))
                continue
            if not constraint.presence and not attribute.present:
                continue
            message = constraint.check(attribute)
            if message:
                messages.append(f"{attribute.path}: {message}")
                # Type failures make the following constraints meaningless
                if isinstance(constraint, (IsList, IsDict, IsString, IsInteger, Required)):
                    break
        return messages


def nested_errors(rules: RuleSet, data: Any, path: str) -> list[str]:
    """Validate ``data`` with ``rules`` and prefix every message with ``path``."""
    prefix = f"{path}." if path else ""
    return [f"{prefix}{message}" for message in RuleValidator(rules).errors(data)]


__all__ = [
    "Attribute",
    "Constraint",
    "CustomRule",
    "In",
    "IsDict",
    "IsInteger",
    "IsList",
    "IsString",
    "MaxItems",
    "Min",
    "Prohibited",
    "ProhibitedIf",
    "Prohibits",
    "Required",
    "RequiredIf",
    "RequiredWithout",
    "RuleSet",
    "RuleValidator",
    "Sometimes",
    "expand",
    "merge_rules",
    "nested_errors",
]
