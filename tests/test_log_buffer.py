"""Tests for the in-memory log buffer and its logging handler."""
import logging

from asic_scanner.utils.log_buffer import BufferHandler, LogBuffer


def test_oldest_lines_dropped_past_maxlen():
    buffer = LogBuffer(maxlen=3)
    for i in range(5):
        buffer.add(f"line {i}")
    assert len(buffer) == 3
    assert [entry["message"] for entry in buffer.get_recent()] == ["line 2", "line 3", "line 4"]
    assert [entry["message"] for entry in buffer.get_recent(1)] == ["line 4"]

    buffer.clear()
    assert len(buffer) == 0


def test_handler_levels():
    buffer = LogBuffer()
    logger = logging.getLogger("asic_scanner.tests.log_buffer")
    logger.propagate = False
    handler = BufferHandler(buffer)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        logger.debug("too quiet")
        logger.info("✓ 10.0.0.1 = AntMiner S19")
        logger.info("Starting sweep")
        logger.warning("✓ but warned")
    finally:
        logger.removeHandler(handler)

    assert [(e["message"], e["level"]) for e in buffer.get_recent()] == [
        ("✓ 10.0.0.1 = AntMiner S19", "success"),
        ("Starting sweep", "info"),
        ("✓ but warned", "warning"),
    ]
