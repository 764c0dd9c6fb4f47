from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import pandas as pd

from hl7_viewer.core.exceptions import HL7ViewerError

EMPTY_LABEL = '(empty)'


class _EmptyValue:
    """Sentinel for empty extractions, distinct from the empty string"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'EMPTY_VALUE'

    def __str__(self) -> str:
        return EMPTY_LABEL

    def __bool__(self) -> bool:
        return False


EMPTY_VALUE = _EmptyValue()


class ValueCount(NamedTuple):
    """One row of the frequency table"""
    value: Any  # extracted text or EMPTY_VALUE
    count: int

    @property
    def is_empty(self) -> bool:
        return self.value is EMPTY_VALUE


@dataclass(frozen=True)
class StatisticsResult:
    """Value distribution for one address over a message set"""
    total_messages: int
    filtered_messages: Optional[int]
    distinct_values: Tuple[ValueCount, ...]
    messages_with_value: int
    messages_without_value: int
    total_occurrences: int

    @property
    def distinct_count(self) -> int:
        """Number of distinct non-empty values"""
        return sum(1 for row in self.distinct_values if not row.is_empty)

    def count_of(self, value: Any) -> int:
        """Occurrences of one value (pass EMPTY_VALUE for the empty bucket)"""
        for row in self.distinct_values:
            if row.value == value or row.value is value:
                return row.count
        return 0

    def _percentage(self, count: int) -> float:
        if not self.total_occurrences:
            return 0.0
        return round(count * 100.0 / self.total_occurrences, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_messages': self.total_messages,
            'filtered_messages': self.filtered_messages,
            'messages_with_value': self.messages_with_value,
            'messages_without_value': self.messages_without_value,
            'total_occurrences': self.total_occurrences,
            'distinct_count': self.distinct_count,
            'distinct_values': [
                {
                    'value': None if row.is_empty else row.value,
                    'label': EMPTY_LABEL if row.is_empty else row.value,
                    'is_empty': row.is_empty,
                    'count': row.count,
                    'percentage': self._percentage(row.count),
                }
                for row in self.distinct_values
            ],
        }

    def to_dataframe(self) -> pd.DataFrame:
        """Frequency table as a DataFrame (value, count, percentage)"""
        rows = [
            {
                'value': str(row.value),
                'count': row.count,
                'percentage': self._percentage(row.count),
            }
            for row in self.distinct_values
        ]
        return pd.DataFrame(rows, columns=['value', 'count', 'percentage'])


@dataclass(frozen=True)
class QueryResult:
    """Outcome of one address/filter query over a text snapshot"""
    total_messages: int
    filtered_messages: Optional[int] = None
    statistics: Optional[StatisticsResult] = None
    filtered_text: Optional[str] = None  # export of filtered messages, when filters applied

    @property
    def filters_applied(self) -> bool:
        return self.filtered_messages is not None

    @property
    def filter_only(self) -> bool:
        return self.statistics is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_messages': self.total_messages,
            'filtered_messages': self.filtered_messages,
            'filters_applied': self.filters_applied,
            'statistics': self.statistics.to_dict() if self.statistics else None,
            'filtered_text': self.filtered_text,
        }


@dataclass(frozen=True)
class QueryError:
    """Tagged failure returned in place of a result"""
    kind: str  # InvalidAddress, InvalidFilterExpression, InvalidCustomLogic, NoMatchingData
    message: str
    labels: Tuple[str, ...] = ()

    @classmethod
    def from_exception(cls, error: HL7ViewerError) -> 'QueryError':
        return cls(kind=error.error_code, message=error.message, labels=error.labels)

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'message': self.message, 'labels': list(self.labels)}


@dataclass(frozen=True)
class MessageValue:
    """Address lookup result for one message"""
    index: int
    value: str
    values: Tuple[str, ...] = ()
    segment_present: bool = True


@dataclass(frozen=True)
class ValueLookup:
    """Address resolved against every message in a snapshot"""
    address: str
    messages: Tuple[MessageValue, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'address': self.address,
            'messages': [
                {
                    'index': item.index,
                    'value': item.value,
                    'values': list(item.values),
                    'segment_present': item.segment_present,
                }
                for item in self.messages
            ],
        }

    @property
    def values(self) -> List[str]:
        return [item.value for item in self.messages]
