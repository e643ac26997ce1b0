import json
import logging
import sys

import pytest

from storekit.common.logging import JsonFormatter, setup_logging


def _record(**kwargs):
    record = logging.LogRecord(
        name="storekit.services.base",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="storage_operation operation=%s status=%s",
        args=("put_object", 200),
        exc_info=None,
    )
    for key, value in kwargs.items():
        setattr(record, key, value)
    return record


def test_formats_message_and_extra_fields():
    payload = json.loads(
        JsonFormatter().format(_record(extra={"operation": "put_object", "key": "a.txt"}))
    )

    assert payload["level"] == "INFO"
    assert payload["logger"] == "storekit.services.base"
    assert payload["message"] == "storage_operation operation=put_object status=200"
    assert payload["key"] == "a.txt"


def test_includes_exception_text():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = _record(exc_info=sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))

    assert "RuntimeError: boom" in payload["exc_info"]


@pytest.fixture()
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("storekit").setLevel(logging.NOTSET)
    botocore = logging.getLogger("botocore")
    botocore.setLevel(logging.NOTSET)
    botocore.handlers.clear()
    botocore.propagate = True


def test_setup_logging_levels(restore_logging):
    setup_logging(debug=True)
    assert logging.getLogger("storekit").level == logging.DEBUG
    assert logging.getLogger("botocore").level == logging.DEBUG
    assert logging.getLogger("botocore").propagate is False

    setup_logging()
    assert logging.getLogger("storekit").level == logging.INFO
    assert logging.getLogger("botocore").level == logging.WARNING


def test_plain_extra_attributes_are_included():
    payload = json.loads(JsonFormatter().format(_record(session_id="fake-upload-1")))

    assert payload["session_id"] == "fake-upload-1"
    assert "time" in payload
    assert "args" not in payload
