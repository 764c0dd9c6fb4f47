"""
HL7 v2 message segmentation.

Splits raw text into messages and each message into segments using the
delimiters declared by that message's MSH header. Parsing is best-effort:
unknown segment kinds are dropped, malformed headers fall back to the
previous (or default) delimiters, and nothing here raises on bad input.

Escape sequences and repetitions are left untouched; fields are stored as the
raw text between field separators.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Tuple

from hl7_viewer.core.logging import get_logger, log_performance
from hl7_viewer.hl7.delimiters import (
    HEADER_SEGMENT,
    ENCODING_START,
    ENCODING_END,
    Delimiters,
    resolve_delimiters,
)

logger = get_logger(__name__)

LINE_BREAK = re.compile(r'\r\n|\n|\r')

# MLLP framing bytes that sometimes survive a copy from an interface log
MLLP_FRAMING = '\x0b\x1c'

SEGMENT_TERMINATOR = '\r'
MESSAGE_TERMINATOR = '\r\r\n'

# Segment identifiers defined by HL7 v2.x (chapters 2-17)
KNOWN_SEGMENTS = frozenset({
    'ABS', 'ACC', 'ADD', 'ADJ', 'AFF', 'AIG', 'AIL', 'AIP', 'AIS', 'AL1',
    'APR', 'ARQ', 'ARV', 'AUT', 'BHS', 'BLC', 'BLG', 'BPO', 'BPX', 'BTS',
    'BTX', 'BUI', 'CDM', 'CDO', 'CER', 'CM0', 'CM1', 'CM2', 'CNS', 'CON',
    'CSP', 'CSR', 'CSS', 'CTD', 'CTI', 'DB1', 'DG1', 'DMI', 'DON', 'DRG',
    'DSC', 'DSP', 'ECD', 'ECR', 'EDU', 'EQP', 'EQU', 'ERR', 'EVN', 'FAC',
    'FHS', 'FT1', 'FTS', 'GOL', 'GP1', 'GP2', 'GT1', 'IAM', 'IIM', 'ILT',
    'IN1', 'IN2', 'IN3', 'INV', 'IPC', 'IPR', 'ISD', 'ITM', 'IVC', 'IVT',
    'LAN', 'LCC', 'LCH', 'LDP', 'LOC', 'LRL', 'MFA', 'MFE', 'MFI', 'MRG',
    'MSA', 'MSH', 'NCK', 'NDS', 'NK1', 'NPU', 'NSC', 'NST', 'NTE', 'OBR',
    'OBX', 'ODS', 'ODT', 'OM1', 'OM2', 'OM3', 'OM4', 'OM5', 'OM6', 'OM7',
    'ORC', 'ORG', 'OVR', 'PAC', 'PCE', 'PCR', 'PD1', 'PDA', 'PDC', 'PEO',
    'PES', 'PID', 'PKG', 'PMT', 'PR1', 'PRA', 'PRB', 'PRC', 'PRD', 'PRT',
    'PSG', 'PSH', 'PSL', 'PSS', 'PTH', 'PV1', 'PV2', 'PYE', 'QAK', 'QID',
    'QPD', 'QRD', 'QRF', 'QRI', 'RCP', 'RDF', 'RDT', 'REL', 'RF1', 'RFI',
    'RGS', 'RMI', 'ROL', 'RQ1', 'RQD', 'RXA', 'RXC', 'RXD', 'RXE', 'RXG',
    'RXO', 'RXR', 'RXV', 'SAC', 'SCD', 'SCH', 'SCP', 'SDD', 'SFT', 'SGH',
    'SGT', 'SHP', 'SID', 'SLT', 'SPM', 'STF', 'STZ', 'TCC', 'TCD', 'TQ1',
    'TQ2', 'TXA', 'UAC', 'UB1', 'UB2', 'URD', 'URS', 'VAR', 'VND',
})


@dataclass(frozen=True)
class Segment:
    """
    One record of a message: a kind label plus its raw fields.

    For MSH, ``fields[0]`` is the verbatim encoding-character block and the
    split fields start at ``fields[1]``; ``separator`` is the header's own
    field separator. For every other kind ``fields[0]`` is field 1.
    """

    kind: str
    fields: Tuple[str, ...]
    separator: str

    @property
    def is_header(self) -> bool:
        return self.kind == HEADER_SEGMENT

    def to_text(self) -> str:
        """Rejoin the segment with its original field separator."""
        if self.is_header:
            return self.kind + self.separator + ''.join(
                [self.fields[0]] + [self.separator + field for field in self.fields[1:]]
            )
        return self.kind + ''.join(self.separator + field for field in self.fields)


@dataclass(frozen=True)
class Message:
    """A header-opened sequence of segments and the delimiters it declared."""

    segments: Tuple[Segment, ...]
    delimiters: Delimiters

    @property
    def header(self) -> Segment:
        return self.segments[0]

    def segments_of(self, kind: str) -> List[Segment]:
        """All segments of one kind, in message order."""
        return [segment for segment in self.segments if segment.kind == kind]

    def first_segment(self, kind: str) -> Optional[Segment]:
        for segment in self.segments:
            if segment.kind == kind:
                return segment
        return None

    @property
    def message_type(self) -> str:
        """MSH-9 (message type) as raw text, empty when absent."""
        # MSH-9 sits at fields[7] because fields[0] holds MSH-2
        if len(self.header.fields) > 7:
            return self.header.fields[7]
        return ''

    def to_text(self) -> str:
        return SEGMENT_TERMINATOR.join(segment.to_text() for segment in self.segments)


def _split_lines(text: str) -> List[str]:
    """Split on any line ending; surrounding whitespace and framing bytes are dropped."""
    return [line.strip().strip(MLLP_FRAMING).strip() for line in LINE_BREAK.split(text)]


def _parse_header(line: str, delimiters: Delimiters) -> Segment:
    """MSH fields begin after the fixed encoding block."""
    separator = delimiters.header_field
    body = line[ENCODING_END:]
    if body.startswith(separator):
        body = body[1:]
    fields = [line[ENCODING_START:ENCODING_END]]
    if line[ENCODING_END:]:
        fields.extend(body.split(separator))
    return Segment(kind=HEADER_SEGMENT, fields=tuple(fields), separator=separator)


def _parse_segment(kind: str, line: str, delimiters: Delimiters) -> Segment:
    separator = delimiters.field
    body = line[3:]
    if body.startswith(separator):
        body = body[1:]
    fields = body.split(separator) if line[3:] else []
    return Segment(kind=kind, fields=tuple(fields), separator=separator)


def segment_messages(text: str) -> List[Message]:
    """
    Split raw HL7 text into messages.

    Every MSH line closes the open message and starts a new one with freshly
    resolved delimiters. Lines before the first MSH and lines whose kind is
    not a known segment identifier are dropped.

    Args:
        text: Raw HL7 text, any mix of CR, LF and CRLF line endings

    Returns:
        Messages in input order (empty when the text has no MSH line)
    """
    messages: List[Message] = []
    if not text:
        return messages

    with log_performance("hl7_segmentation", logger):
        current: Optional[List[Segment]] = None
        delimiters: Optional[Delimiters] = None
        dropped = 0

        for line in _split_lines(text):
            if not line.strip():
                continue

            kind = line[:3]

            if kind == HEADER_SEGMENT:
                if current is not None:
                    messages.append(Message(segments=tuple(current), delimiters=delimiters))
                delimiters = resolve_delimiters(line, delimiters)
                current = [_parse_header(line, delimiters)]
                continue

            if current is None or kind not in KNOWN_SEGMENTS:
                dropped += 1
                continue

            current.append(_parse_segment(kind, line, delimiters))

        if current is not None:
            messages.append(Message(segments=tuple(current), delimiters=delimiters))

    logger.info(
        "HL7 text segmented",
        extra={'message_count': len(messages), 'dropped_lines': dropped}
    )
    return messages


def export_messages(messages: List[Message]) -> str:
    """
    Render messages back to text.

    Segments are separated by CR and messages by CR CR LF; downstream
    consumers depend on this exact layout.
    """
    return MESSAGE_TERMINATOR.join(message.to_text() for message in messages)


def segment_counts(message: Message) -> Dict[str, int]:
    """Count segments of each kind, in first-seen order."""
    counts: Dict[str, int] = {}
    for segment in message.segments:
        counts[segment.kind] = counts.get(segment.kind, 0) + 1
    return counts


def summarize_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    """Per-message structural summary for display."""
    return [
        {
            'index': index,
            'message_type': message.message_type,
            'segment_count': len(message.segments),
            'segments': [segment.kind for segment in message.segments],
            'segment_counts': segment_counts(message),
            'delimiters': message.delimiters.to_dict(),
        }
        for index, message in enumerate(messages, start=1)
    ]
