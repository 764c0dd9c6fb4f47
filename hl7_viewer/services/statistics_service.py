from typing import Dict, List, Optional, Union

from hl7_viewer.core.exceptions import (
    HL7ViewerError,
    InvalidAddressError,
    NoMatchingDataError,
)
from hl7_viewer.core.logging import get_logger, log_performance
from hl7_viewer.hl7.address import Address, parse_address, resolve_all_values, resolve_segment_value
from hl7_viewer.hl7.filters import FilterEntries, build_filter_set
from hl7_viewer.hl7.parser import Message, export_messages, segment_messages
from hl7_viewer.models.results import (
    EMPTY_VALUE,
    MessageValue,
    QueryError,
    QueryResult,
    StatisticsResult,
    ValueCount,
    ValueLookup,
)

logger = get_logger(__name__)


class StatisticsService:
    """Runs address and filter queries over a snapshot of HL7 text"""

    def run_query(
        self,
        text: str,
        address: Optional[str] = None,
        filters: Optional[FilterEntries] = None,
        mode: Optional[str] = None,
        logic: Optional[str] = None
    ) -> Union[QueryResult, QueryError]:
        """
        Filter the messages in ``text`` and summarize the values at ``address``

        Args:
            text: Raw HL7 text
            address: Address such as PID.5.1; omit for a filter-only run
            filters: Filter expressions (list labelled F1.. or label mapping)
            mode: single, AND, OR or custom
            logic: Custom logic expression over filter labels

        Returns:
            QueryResult, or a QueryError describing why the query is invalid
        """
        try:
            with log_performance("statistics_query", logger):
                return self._run(text, address, filters, mode, logic)
        except HL7ViewerError as e:
            logger.info(
                "Query rejected",
                extra={'error_code': e.error_code, 'labels': list(e.labels)}
            )
            return QueryError.from_exception(e)

    def _run(
        self,
        text: str,
        address: Optional[str],
        filters: Optional[FilterEntries],
        mode: Optional[str],
        logic: Optional[str]
    ) -> QueryResult:
        filter_set = build_filter_set(filters, mode, logic)
        parsed_address = self._parse_address(address)

        messages = segment_messages(text or '')
        total = len(messages)

        if filter_set is not None:
            included = filter_set.apply(messages)
            filtered_count = len(included)
            filtered_text = export_messages(included)
        else:
            included = messages
            filtered_count = None
            filtered_text = None

        if parsed_address is None:
            logger.info(
                "Filter-only query completed",
                extra={'total_messages': total, 'filtered_messages': filtered_count}
            )
            return QueryResult(
                total_messages=total,
                filtered_messages=filtered_count,
                filtered_text=filtered_text,
            )

        if not any(message.first_segment(parsed_address.segment) for message in messages):
            raise NoMatchingDataError(parsed_address.segment)

        statistics = compute_statistics(included, parsed_address, total, filtered_count)

        logger.info(
            "Statistics query completed",
            extra={
                'address': str(parsed_address),
                'total_messages': total,
                'filtered_messages': filtered_count,
                'distinct_count': statistics.distinct_count,
            }
        )
        return QueryResult(
            total_messages=total,
            filtered_messages=filtered_count,
            statistics=statistics,
            filtered_text=filtered_text,
        )

    def lookup_values(self, text: str, address: str) -> Union[ValueLookup, QueryError]:
        """Resolve an address against every message (first matching segment)"""
        try:
            parsed_address = self._parse_address(address)
            if parsed_address is None:
                raise InvalidAddressError(address or '')

            messages = segment_messages(text or '')
            items = []
            for index, message in enumerate(messages, start=1):
                segment = message.first_segment(parsed_address.segment)
                items.append(MessageValue(
                    index=index,
                    value=resolve_segment_value(parsed_address, segment, message.delimiters) if segment else '',
                    values=tuple(resolve_all_values(parsed_address, message)),
                    segment_present=segment is not None,
                ))

            if not any(item.segment_present for item in items):
                raise NoMatchingDataError(parsed_address.segment)

            return ValueLookup(address=str(parsed_address), messages=tuple(items))
        except HL7ViewerError as e:
            return QueryError.from_exception(e)

    def validate_filters(
        self,
        filters: Optional[FilterEntries],
        mode: Optional[str] = None,
        logic: Optional[str] = None
    ) -> Optional[QueryError]:
        """Check filter entries and logic; None when they are valid"""
        try:
            build_filter_set(filters, mode, logic)
        except HL7ViewerError as e:
            return QueryError.from_exception(e)
        return None

    def _parse_address(self, address: Optional[str]) -> Optional[Address]:
        """None for a blank address; raises for a malformed one"""
        if address is None or not str(address).strip():
            return None
        parsed = parse_address(str(address))
        if parsed is None:
            raise InvalidAddressError(str(address))
        return parsed


def compute_statistics(
    messages: List[Message],
    address: Address,
    total_messages: int,
    filtered_messages: Optional[int] = None
) -> StatisticsResult:
    """
    Build the frequency table for an address over a message set

    Every segment of the addressed kind contributes one extraction, and a
    message without that segment contributes a single empty extraction.
    Values are grouped after trimming; ties keep first-seen order.
    """
    counts: Dict[object, int] = {}
    with_value = 0
    occurrences = 0

    for message in messages:
        extractions = [value.strip() for value in resolve_all_values(address, message)] or ['']

        if any(extractions):
            with_value += 1

        for value in extractions:
            key = value if value else EMPTY_VALUE
            counts[key] = counts.get(key, 0) + 1
        occurrences += len(extractions)

    # sorted() is stable, so equal counts stay in insertion (first-seen) order
    ranked = sorted(counts.items(), key=lambda item: -item[1])

    return StatisticsResult(
        total_messages=total_messages,
        filtered_messages=filtered_messages,
        distinct_values=tuple(ValueCount(value, count) for value, count in ranked),
        messages_with_value=with_value,
        messages_without_value=len(messages) - with_value,
        total_occurrences=occurrences,
    )


# Convenience function mirroring the service method
def run_query(
    text: str,
    address: Optional[str] = None,
    filters: Optional[FilterEntries] = None,
    mode: Optional[str] = None,
    logic: Optional[str] = None
) -> Union[QueryResult, QueryError]:
    """Run one query with a fresh StatisticsService"""
    return StatisticsService().run_query(text, address, filters, mode, logic)
