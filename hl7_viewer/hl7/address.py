"""
Hierarchical HL7 addresses and their resolution.

An address such as ``PID.5.1`` points at segment PID, field 5, component 1.
Positions are 1-indexed, matching HL7 documentation.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from hl7_viewer.hl7.delimiters import Delimiters
from hl7_viewer.hl7.parser import Message, Segment

NUMERIC_PART = re.compile(r'^[0-9]+$')


@dataclass(frozen=True)
class Address:
    """Parsed SEGMENT.FIELD[.COMPONENT[.SUBCOMPONENT]] pointer."""

    segment: str
    field: int
    component: Optional[int] = None
    subcomponent: Optional[int] = None

    def __str__(self) -> str:
        parts = [self.segment, str(self.field)]
        if self.component is not None:
            parts.append(str(self.component))
            if self.subcomponent is not None:
                parts.append(str(self.subcomponent))
        return '.'.join(parts)


def _positive(part: str) -> Optional[int]:
    if not NUMERIC_PART.match(part):
        return None
    number = int(part)
    return number if number > 0 else None


def parse_address(text: str) -> Optional[Address]:
    """
    Parse a dotted address string.

    Returns None for anything outside the grammar: fewer than 2 or more than
    4 parts, an empty segment token, or a position that is not a positive
    integer. The segment token is case-insensitive.
    """
    if not isinstance(text, str):
        return None

    parts = text.strip().split('.')
    if not 2 <= len(parts) <= 4:
        return None

    segment = parts[0].upper()
    if not segment or any(char.isspace() for char in segment):
        return None

    positions = [_positive(part) for part in parts[1:]]
    if any(position is None for position in positions):
        return None

    positions.extend([None] * (3 - len(positions)))
    return Address(
        segment=segment,
        field=positions[0],
        component=positions[1],
        subcomponent=positions[2],
    )


def _nth(values: List[str], position: int) -> str:
    """1-indexed lookup, empty when out of range."""
    if 1 <= position <= len(values):
        return values[position - 1]
    return ''


def _raw_field(address: Address, segment: Segment) -> str:
    if segment.is_header:
        # MSH-1 is the separator itself and MSH-2 the encoding block stored
        # in fields[0], so MSH-N for N > 2 lives at fields[N-2].
        if address.field == 1:
            return segment.separator
        return _nth(list(segment.fields), address.field - 1)
    return _nth(list(segment.fields), address.field)


def resolve_segment_value(address: Address, segment: Segment, delimiters: Delimiters) -> str:
    """
    Resolve an address against one segment.

    Component and subcomponent positions split on the message's delimiters;
    out-of-range positions give an empty string.
    """
    value = _raw_field(address, segment)

    if address.component is None:
        return value
    value = _nth(value.split(delimiters.component), address.component)

    if address.subcomponent is None:
        return value
    return _nth(value.split(delimiters.subcomponent), address.subcomponent)


def resolve_value(address: Address, message: Message) -> str:
    """
    Resolve an address against the first matching segment of a message.

    Later segments of the same kind are ignored; an absent segment gives an
    empty string.
    """
    segment = message.first_segment(address.segment)
    if segment is None:
        return ''
    return resolve_segment_value(address, segment, message.delimiters)


def resolve_all_values(address: Address, message: Message) -> List[str]:
    """Resolve an address against every segment of the addressed kind."""
    return [
        resolve_segment_value(address, segment, message.delimiters)
        for segment in message.segments_of(address.segment)
    ]
