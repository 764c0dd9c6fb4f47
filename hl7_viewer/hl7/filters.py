"""
Filter conditions over HL7 addresses.

A condition reads ``ADDRESS OPERATOR [VALUE]``, for example
``PID.8 = F``, ``OBX.3.1 contains GLU`` or ``PV1.19 !exists``. Comparisons
ignore case and surrounding whitespace.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from hl7_viewer.core.exceptions import InvalidCustomLogicError, InvalidFilterExpressionError
from hl7_viewer.core.logging import get_logger
from hl7_viewer.hl7.address import Address, parse_address, resolve_segment_value
from hl7_viewer.hl7.logic import KEYWORDS, LABEL_PATTERN, LogicExpression, compile_logic
from hl7_viewer.hl7.parser import Message

logger = get_logger(__name__)

EQUALS = '='
NOT_EQUALS = '!='
CONTAINS = 'contains'
NOT_CONTAINS = '!contains'
EXISTS = 'exists'
NOT_EXISTS = '!exists'

OPERATORS = (EQUALS, NOT_EQUALS, CONTAINS, NOT_CONTAINS, EXISTS, NOT_EXISTS)

# Operators that hold when the target segment is missing from a message
NEGATED_OPERATORS = {NOT_EQUALS, NOT_CONTAINS, NOT_EXISTS}

UNARY_PATTERN = re.compile(r'^(\S+)\s+(!?exists)$', re.IGNORECASE)

# Order matters: '!=' before '=' and '!contains' before 'contains'
BINARY_PATTERNS = (
    (NOT_EQUALS, re.compile(r'^(\S+?)\s*!=\s*(.*)$', re.DOTALL)),
    (EQUALS, re.compile(r'^(\S+?)\s*=\s*(.*)$', re.DOTALL)),
    (NOT_CONTAINS, re.compile(r'^(\S+)\s+!contains(?:\s+(.*))?$', re.IGNORECASE | re.DOTALL)),
    (CONTAINS, re.compile(r'^(\S+)\s+contains(?:\s+(.*))?$', re.IGNORECASE | re.DOTALL)),
)

MODE_SINGLE = 'single'
MODE_AND = 'AND'
MODE_OR = 'OR'
MODE_CUSTOM = 'custom'

MODES = {
    'single': MODE_SINGLE,
    'and': MODE_AND,
    'or': MODE_OR,
    'custom': MODE_CUSTOM,
}

FilterEntries = Union[Sequence[str], Mapping[str, str]]


@dataclass(frozen=True)
class FilterCondition:
    """One named comparison against an address's resolved value."""

    label: str
    address: Address
    operator: str
    value: str = ''

    def __str__(self) -> str:
        if self.operator in (EXISTS, NOT_EXISTS):
            return f"{self.address} {self.operator}"
        return f"{self.address} {self.operator} {self.value}"


def parse_filter_expression(text: str, label: str = 'F1') -> Optional[FilterCondition]:
    """
    Parse one filter expression.

    Returns None when the text matches neither the unary nor the binary form,
    or when its left-hand side is not a valid address.
    """
    if not isinstance(text, str):
        return None
    text = text.strip()

    match = UNARY_PATTERN.match(text)
    if match:
        address = parse_address(match.group(1))
        if address is None:
            return None
        return FilterCondition(label=label, address=address, operator=match.group(2).lower())

    for operator, pattern in BINARY_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        address = parse_address(match.group(1))
        if address is None:
            return None
        return FilterCondition(
            label=label,
            address=address,
            operator=operator,
            value=(match.group(2) or '').strip(),
        )

    return None


def evaluate_condition(condition: FilterCondition, message: Message) -> bool:
    """
    Evaluate a condition against the first addressed segment of a message.

    A message without the addressed segment satisfies only the negated
    operators.
    """
    segment = message.first_segment(condition.address.segment)
    if segment is None:
        return condition.operator in NEGATED_OPERATORS

    actual = resolve_segment_value(condition.address, segment, message.delimiters).strip().upper()
    expected = condition.value.strip().upper()

    if condition.operator == EQUALS:
        return actual == expected
    if condition.operator == NOT_EQUALS:
        return actual != expected
    if condition.operator == CONTAINS:
        return expected in actual
    if condition.operator == NOT_CONTAINS:
        return expected not in actual
    if condition.operator == EXISTS:
        return actual != ''
    if condition.operator == NOT_EXISTS:
        return actual == ''
    raise ValueError(f"Unsupported filter operator: {condition.operator}")


@dataclass(frozen=True)
class FilterSet:
    """Named conditions plus the mode that combines them."""

    conditions: Tuple[FilterCondition, ...]
    mode: str
    logic: Optional[LogicExpression] = None

    @property
    def labels(self) -> List[str]:
        return [condition.label for condition in self.conditions]

    def evaluate(self, message: Message) -> Dict[str, bool]:
        """Per-label results for one message."""
        return {
            condition.label: evaluate_condition(condition, message)
            for condition in self.conditions
        }

    def includes(self, message: Message) -> bool:
        """Decide whether a message passes the filter set."""
        results = self.evaluate(message)
        if self.mode == MODE_SINGLE:
            return results[self.conditions[0].label]
        if self.mode == MODE_AND:
            return all(results.values())
        if self.mode == MODE_OR:
            return any(results.values())
        return self.logic.evaluate(results)

    def apply(self, messages: Sequence[Message]) -> List[Message]:
        return [message for message in messages if self.includes(message)]


def normalize_mode(mode: Optional[str]) -> str:
    """Canonical combination mode, AND when unset."""
    if mode is None or not str(mode).strip():
        return MODE_AND
    canonical = MODES.get(str(mode).strip().lower())
    if canonical is None:
        raise InvalidCustomLogicError(
            f"Unknown combination mode '{mode}': expected single, AND, OR or custom"
        )
    return canonical


def _labelled_entries(filters: FilterEntries) -> List[Tuple[str, str]]:
    """Label list entries F1..Fn by position; mappings keep their own labels."""
    if isinstance(filters, Mapping):
        entries = [(str(label).strip(), expression) for label, expression in filters.items()]
    else:
        entries = [(f"F{position}", expression) for position, expression in enumerate(filters, start=1)]
    # Blank rows are placeholders and do not take part in filtering
    return [
        (label, expression) for label, expression in entries
        if isinstance(expression, str) and expression.strip()
    ]


def build_filter_set(
    filters: Optional[FilterEntries],
    mode: Optional[str] = None,
    logic: Optional[str] = None
) -> Optional[FilterSet]:
    """
    Parse and validate filter entries into a FilterSet.

    Args:
        filters: Expressions as a list (labelled F1, F2, ...) or label mapping
        mode: single, AND, OR or custom (case-insensitive, AND when unset)
        logic: Boolean expression over labels, required for custom mode

    Returns:
        FilterSet, or None when there are no non-blank entries

    Raises:
        InvalidFilterExpressionError: naming every label that failed to parse
        InvalidCustomLogicError: for an unknown mode or invalid custom logic
    """
    if not filters:
        return None

    entries = _labelled_entries(filters)
    if not entries:
        return None

    canonical_mode = normalize_mode(mode)

    bad_labels = [
        label for label, _ in entries
        if not LABEL_PATTERN.match(label) or label.upper() in KEYWORDS
    ]
    if bad_labels:
        raise InvalidFilterExpressionError(
            f"Invalid filter label(s): {', '.join(bad_labels)}", labels=bad_labels
        )

    seen = set()
    duplicates = []
    for label, _ in entries:
        if label.upper() in seen:
            duplicates.append(label)
        seen.add(label.upper())
    if duplicates:
        raise InvalidFilterExpressionError(
            f"Duplicate filter label(s): {', '.join(duplicates)}", labels=duplicates
        )

    conditions = []
    failed = []
    for label, expression in entries:
        condition = parse_filter_expression(expression, label)
        if condition is None:
            failed.append(label)
        else:
            conditions.append(condition)
    if failed:
        raise InvalidFilterExpressionError.for_labels(failed)

    if canonical_mode == MODE_SINGLE and len(conditions) != 1:
        raise InvalidFilterExpressionError(
            f"Mode 'single' requires exactly one filter, got {len(conditions)}",
            labels=[condition.label for condition in conditions]
        )

    compiled = None
    if canonical_mode == MODE_CUSTOM:
        compiled = compile_logic(logic, [condition.label for condition in conditions])

    logger.debug(
        "Filter set built",
        extra={'condition_count': len(conditions), 'mode': canonical_mode}
    )
    return FilterSet(conditions=tuple(conditions), mode=canonical_mode, logic=compiled)
