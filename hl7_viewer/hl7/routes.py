"""
HL7 Viewer API routes.

JSON endpoints over the query engine. Every request carries the raw HL7 text
it operates on; nothing is stored between requests.
"""

from flask import Blueprint, Response, current_app, jsonify, request
from typing import Any, Dict

from hl7_viewer.core.logging import get_logger, create_audit_log
from hl7_viewer.hl7.parser import segment_messages, summarize_messages
from hl7_viewer.models.results import QueryError
from hl7_viewer.services.statistics_service import StatisticsService

logger = get_logger(__name__)


def create_hl7_blueprint() -> Blueprint:
    """
    Create and configure the HL7 viewer blueprint.

    Returns:
        Configured Flask blueprint, mounted by the app factory at BASE_PATH
    """
    bp = Blueprint('hl7', __name__)

    bp.add_url_rule('/', 'index', index, methods=['GET'])
    bp.add_url_rule('/api/parse', 'api_parse', api_parse, methods=['POST'])
    bp.add_url_rule('/api/value', 'api_value', api_value, methods=['POST'])
    bp.add_url_rule('/api/filters/validate', 'api_validate_filters', api_validate_filters, methods=['POST'])
    bp.add_url_rule('/api/stats', 'api_stats', api_stats, methods=['POST'])
    bp.add_url_rule('/api/stats/export.csv', 'api_stats_csv', api_stats_csv, methods=['POST'])
    bp.add_url_rule('/api/filter/export', 'api_filter_export', api_filter_export, methods=['POST'])

    logger.info("HL7 blueprint created with all routes registered")
    return bp


class BadRequest(Exception):
    """Request body is missing or has the wrong shape."""


def _request_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest('Request body must be a JSON object')
    return data


def _message_text(data: Dict[str, Any]) -> str:
    text = data.get('message')
    if not isinstance(text, str) or not text.strip():
        raise BadRequest('No HL7 message provided')
    return text


def _filter_args(data: Dict[str, Any]) -> Dict[str, Any]:
    filters = data.get('filters')
    if filters is not None and not isinstance(filters, (list, dict)):
        raise BadRequest('filters must be a list of expressions or an object of label to expression')
    if isinstance(filters, list) and not all(isinstance(entry, str) for entry in filters):
        raise BadRequest('Every filter expression must be a string')
    if isinstance(filters, dict) and not all(isinstance(entry, str) for entry in filters.values()):
        raise BadRequest('Every filter expression must be a string')
    for key in ('mode', 'logic'):
        if data.get(key) is not None and not isinstance(data[key], str):
            raise BadRequest(f'{key} must be a string')
    return {
        'filters': filters,
        'mode': data.get('mode'),
        'logic': data.get('logic'),
    }


def _bad_request(message: str):
    return jsonify({'success': False, 'error': {'kind': 'BadRequest', 'message': message, 'labels': []}}), 400


def _query_error(error: QueryError):
    logger.info("Query returned tagged error", extra={'error_code': error.kind})
    return jsonify({'success': False, 'error': error.to_dict()}), 400


def index():
    """Describe the service and its endpoints."""
    base_path = current_app.config.get('BASE_PATH', '/HL7')
    return jsonify({
        'service': 'hl7-viewer',
        'base_path': base_path,
        'endpoints': {
            'parse': f'{base_path}/api/parse',
            'value': f'{base_path}/api/value',
            'validate_filters': f'{base_path}/api/filters/validate',
            'stats': f'{base_path}/api/stats',
            'stats_csv': f'{base_path}/api/stats/export.csv',
            'filter_export': f'{base_path}/api/filter/export',
        },
    })


def api_parse():
    """Segment HL7 text and return a structural summary of each message."""
    try:
        text = _message_text(_request_body())
    except BadRequest as e:
        return _bad_request(str(e))

    messages = segment_messages(text)

    create_audit_log(
        action='hl7_text_parsed',
        resource='hl7_message',
        details={'message_count': len(messages), 'text_length': len(text)}
    )

    return jsonify({
        'success': True,
        'message_count': len(messages),
        'messages': summarize_messages(messages),
    })


def api_value():
    """Resolve one address against every message."""
    try:
        data = _request_body()
        text = _message_text(data)
    except BadRequest as e:
        return _bad_request(str(e))

    result = StatisticsService().lookup_values(text, data.get('address'))
    if isinstance(result, QueryError):
        return _query_error(result)

    create_audit_log(
        action='hl7_value_lookup',
        resource='hl7_message',
        details={'address': result.address, 'message_count': len(result.messages)}
    )
    return jsonify({'success': True, **result.to_dict()})


def api_validate_filters():
    """Validate filter expressions and custom logic without running a query."""
    try:
        args = _filter_args(_request_body())
    except BadRequest as e:
        return _bad_request(str(e))

    error = StatisticsService().validate_filters(**args)
    if error is not None:
        return jsonify({'success': True, 'valid': False, 'error': error.to_dict()})
    return jsonify({'success': True, 'valid': True, 'error': None})


def api_stats():
    """Filter messages and summarize the values found at an address."""
    try:
        data = _request_body()
        text = _message_text(data)
        args = _filter_args(data)
    except BadRequest as e:
        return _bad_request(str(e))

    result = StatisticsService().run_query(text, address=data.get('address'), **args)
    if isinstance(result, QueryError):
        return _query_error(result)

    create_audit_log(
        action='hl7_statistics_query',
        resource='hl7_message',
        details={
            'total_messages': result.total_messages,
            'filtered_messages': result.filtered_messages,
            'filter_only': result.filter_only,
        }
    )
    return jsonify({'success': True, **result.to_dict()})


def api_stats_csv():
    """Value distribution for an address as a CSV download."""
    try:
        data = _request_body()
        text = _message_text(data)
        args = _filter_args(data)
        if not data.get('address'):
            raise BadRequest('An address is required for a CSV export')
    except BadRequest as e:
        return _bad_request(str(e))

    result = StatisticsService().run_query(text, address=data['address'], **args)
    if isinstance(result, QueryError):
        return _query_error(result)

    csv_text = result.statistics.to_dataframe().to_csv(index=False)
    return Response(
        csv_text,
        mimetype='text/csv',
        headers={'Content-Disposition': 'attachment; filename=hl7_value_distribution.csv'}
    )


def api_filter_export():
    """Filtered messages as HL7 text."""
    try:
        data = _request_body()
        text = _message_text(data)
        args = _filter_args(data)
    except BadRequest as e:
        return _bad_request(str(e))

    result = StatisticsService().run_query(text, **args)
    if isinstance(result, QueryError):
        return _query_error(result)
    if not result.filters_applied:
        return _bad_request('No filters provided')

    create_audit_log(
        action='hl7_filtered_export',
        resource='hl7_message',
        details={'total_messages': result.total_messages, 'filtered_messages': result.filtered_messages}
    )
    return Response(
        result.filtered_text,
        mimetype='text/plain',
        headers={'Content-Disposition': 'attachment; filename=filtered_messages.hl7'}
    )
