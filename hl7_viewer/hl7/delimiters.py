"""
HL7 delimiter resolution from MSH header records.

The MSH segment declares its own separators: the character at index 3 is the
field separator and the four characters after it are the encoding characters
(component, repetition, escape, subcomponent).
"""

from dataclasses import dataclass
from typing import Optional

from hl7_viewer.core.logging import get_logger

logger = get_logger(__name__)

HEADER_SEGMENT = 'MSH'

DEFAULT_FIELD_SEPARATOR = '|'
DEFAULT_COMPONENT_SEPARATOR = '^'
DEFAULT_SUBCOMPONENT_SEPARATOR = '&'

# Index of the field separator inside an MSH line
FIELD_SEPARATOR_POSITION = 3
# Encoding characters occupy MSH[4:8]
ENCODING_START = 4
ENCODING_LENGTH = 4
ENCODING_END = ENCODING_START + ENCODING_LENGTH


@dataclass(frozen=True)
class Delimiters:
    """Structural separators in effect for one message."""

    field: str = DEFAULT_FIELD_SEPARATOR
    component: str = DEFAULT_COMPONENT_SEPARATOR
    subcomponent: str = DEFAULT_SUBCOMPONENT_SEPARATOR
    header_field: str = DEFAULT_FIELD_SEPARATOR

    def to_dict(self) -> dict:
        return {
            'field': self.field,
            'component': self.component,
            'subcomponent': self.subcomponent,
            'header_field': self.header_field,
        }


DEFAULT_DELIMITERS = Delimiters()


def resolve_delimiters(header_line: str, previous: Optional[Delimiters] = None) -> Delimiters:
    """
    Derive delimiters from the raw text of an MSH record.

    Malformed headers never raise. A line too short to hold the encoding block
    keeps the previously resolved separators (defaults for the first message);
    if it still reaches index 3, the header's own field separator is taken
    from it.

    Args:
        header_line: Raw MSH line
        previous: Delimiters resolved for the preceding message, if any

    Returns:
        Delimiters for the message opened by this header
    """
    base = previous or DEFAULT_DELIMITERS

    if len(header_line) >= ENCODING_END:
        separator = header_line[FIELD_SEPARATOR_POSITION]
        encoding = header_line[ENCODING_START:ENCODING_END]
        return Delimiters(
            field=separator,
            component=encoding[0],
            subcomponent=encoding[3],
            header_field=separator,
        )

    logger.debug(
        "Header shorter than encoding block, keeping previous delimiters",
        extra={'header_length': len(header_line)}
    )

    if len(header_line) > FIELD_SEPARATOR_POSITION:
        return Delimiters(
            field=base.field,
            component=base.component,
            subcomponent=base.subcomponent,
            header_field=header_line[FIELD_SEPARATOR_POSITION],
        )

    return base
