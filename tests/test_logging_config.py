import logging
import sys

from logging_config import ContextualFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="connectors.base",
        level=logging.ERROR,
        pathname=__file__,
        lineno=1,
        msg="Poll failed.",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_appends_known_extra_keys() -> None:
    formatter = ContextualFormatter(fmt="%(levelname)s %(message)s")

    output = formatter.format(_record(provider="netatmo", outcome="failed", unrelated="x"))

    assert output == "ERROR Poll failed. | provider=netatmo outcome=failed"


def test_formatter_without_context_is_unchanged() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    assert formatter.format(_record()) == "Poll failed."


def test_context_stays_on_first_line_before_traceback() -> None:
    formatter = ContextualFormatter(fmt="%(message)s", extra_keys=["reason"])
    try:
        raise ValueError("bad payload")
    except ValueError:
        record = _record(reason="ValueError")
        record.exc_info = sys.exc_info()

    first_line, _, rest = formatter.format(record).partition("\n")

    assert first_line == "Poll failed. | reason=ValueError"
    assert "ValueError: bad payload" in rest
