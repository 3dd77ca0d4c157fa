import logging

import pytest
import dataframely as dy
import polars as pl
from polars.testing import assert_frame_equal

from atlas_ingest.runtime_utils.process_logger import ProcessLogger


class Schema(dy.Schema):
    "Trivial schema to test how dataframely reports errors."
    key = dy.Int64(primary_key=True, min=0)
    value1 = dy.Float64(nullable=False)


@pytest.fixture(name="schema")
def fixture_schema() -> type[Schema]:
    "Wrapper around Schema for registration as a fixture."
    return Schema


def test_unstarted_log(caplog: pytest.LogCaptureFixture) -> None:
    "It logs unraised validation errors with the correct type and message."

    process_logger = ProcessLogger("test_unstarted_log")
    process_logger.add_metadata(foo="bar")
    process_logger.log_failure(Exception("test"))
    process_logger.log_complete()

    assert "status=complete" in caplog.text


def test_unraised_exception(caplog: pytest.LogCaptureFixture) -> None:
    "It doesn't output `NoneType: None` when the exception has no traceback."

    process_logger = ProcessLogger("test_not_none")
    process_logger.log_start()

    exception = Exception("foo")

    process_logger.log_failure(Exception(exception))

    assert not exception.__traceback__
    assert "NoneType: None" not in caplog.text.splitlines()


def test_start_logging_explicitly(caplog: pytest.LogCaptureFixture) -> None:
    "It doesn't start the log when it initializes."

    ProcessLogger("test_not_none", foo="bar")

    assert caplog.text == ""


def test_log_lines(caplog: pytest.LogCaptureFixture) -> None:
    "It writes key=value pairs with the service name, status and duration."
    caplog.set_level(logging.INFO)

    process_logger = ProcessLogger("test_log_lines", feed_id="f-test")
    process_logger.log_start()
    process_logger.log_complete()

    assert "parent=atlas_ingest_test" in caplog.text
    assert "process_name=test_log_lines" in caplog.text
    assert "status=started" in caplog.text
    assert "status=complete" in caplog.text
    assert "duration=" in caplog.text
    assert "feed_id=f-test" in caplog.text


def test_protected_keys(caplog: pytest.LogCaptureFixture) -> None:
    "It ignores metadata that would overwrite default data."
    caplog.set_level(logging.INFO)

    process_logger = ProcessLogger("test_protected_keys", status="hijacked", uuid="mine")
    process_logger.log_start()

    assert "status=hijacked" not in caplog.text
    assert "uuid=mine" not in caplog.text


def test_log_warning(caplog: pytest.LogCaptureFixture) -> None:
    "It logs warnings without failing the process."
    caplog.set_level(logging.INFO)

    process_logger = ProcessLogger("test_log_warning")
    process_logger.log_start()
    process_logger.log_warning(ValueError("shape has one point"))
    process_logger.log_complete()

    warnings = [record.getMessage() for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "error_type=ValueError" in warnings[0]
    assert "warning=shape has one point" in warnings[0]
    assert "status=failed" not in caplog.text

    # warning details do not leak into later lines
    assert "shape has one point" not in caplog.records[-1].getMessage()


def test_2_errors(schema: type[Schema], caplog: pytest.LogCaptureFixture) -> None:
    "It gracefully logs 2 errors as warnings."
    process_logger = ProcessLogger("test_2_errors")

    df = pl.DataFrame({"key": range(-1, 9), "value1": [float(n) for n in range(0, 9)] + [None]})

    valid = process_logger.log_dataframely_filter_results(*schema().filter(df))

    assert "error_type=ValidationError" in caplog.text
    assert "key|min" in caplog.text
    assert "value1|nullability" in caplog.text
    assert "invalid_records=2\n" in caplog.text
    assert logging.WARNING in [r[1] for r in caplog.record_tuples]
    assert valid.height == 8


def test_0_errors(schema: type[Schema], caplog: pytest.LogCaptureFixture) -> None:
    "It logs 0 validation_errors and returns the entire dataframe."
    process_logger = ProcessLogger("test_no_errors")

    df1 = pl.DataFrame({"key": range(0, 10), "value1": [float(n) for n in range(0, 10)]})

    valid = process_logger.log_dataframely_filter_results(*schema().filter(df1))

    assert "ValidationError" not in caplog.text
    assert "invalid_records=0\n" in caplog.text

    assert_frame_equal(df1, valid)
