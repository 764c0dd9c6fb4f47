"""Shared fixtures for the HL7 Viewer test suite."""
from __future__ import annotations

import pytest

from hl7_viewer import create_app
from hl7_viewer.config import Config

# Two minimal messages, one PID each
TWO_MESSAGES = (
    "MSH|^~\\&|A\rPID|||ID1^^^SYS||DOE^JOHN\r"
    "MSH|^~\\&|A\rPID|||ID2^^^SYS||SMITH^JANE\r"
)

# Lab results: three messages with repeating OBX segments, one without PV1
LAB_RESULTS = "\n".join([
    "MSH|^~\\&|LAB|HOSP|EHR|HOSP|20240101120000||ORU^R01|MSG001|P|2.5.1",
    "PID|1||100^^^MRN||DOE^JOHN^Q||19800101|M",
    "PV1|1|I|ICU^101^A",
    "OBR|1||ORD1|CBC^Complete Blood Count",
    "OBX|1|NM|WBC^White Blood Cells||7.2|10*3/uL|||N",
    "OBX|2|NM|HGB^Hemoglobin||13.5|g/dL|||N",
    "MSH|^~\\&|LAB|HOSP|EHR|HOSP|20240101130000||ORU^R01|MSG002|P|2.5.1",
    "PID|1||200^^^MRN||SMITH^JANE||19900202|F",
    "PV1|1|O|CLINIC^2",
    "OBX|1|NM|WBC^White Blood Cells||11.9|10*3/uL|||H",
    "MSH|^~\\&|ADT|HOSP|EHR|HOSP|20240101140000||ADT^A01|MSG003|P|2.5.1",
    "PID|1||300^^^MRN||BROWN^ALEX||19750303|F",
    "",
])


@pytest.fixture
def two_messages() -> str:
    return TWO_MESSAGES


@pytest.fixture
def lab_results() -> str:
    return LAB_RESULTS


@pytest.fixture
def app(monkeypatch):
    monkeypatch.setenv('FLASK_ENV', 'testing')
    monkeypatch.setenv('LOG_LEVEL', 'WARNING')
    monkeypatch.delenv('BASE_PATH', raising=False)
    monkeypatch.delenv('PORT', raising=False)
    application = create_app(Config())
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()
