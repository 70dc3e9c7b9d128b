"""
Capture parser: replay recorded phone sensor streams from JSON-lines files.

Each line holds one reading:
    {"timestamp": 1700000000000,
     "accelerometer": {"x": 0.1, "y": 0.2, "z": 9.8},
     "gps": {"latitude": 28.61, "longitude": 77.20, "accuracy": 5, "speed": 8.3}}
"""

from typing import Iterator

from pydantic import ValidationError

from roadwatch.utils.log import get_logger
from roadwatch.utils.validate import SensorReading

logger = get_logger(__name__)


def parse_reading_line(line: str) -> SensorReading:
    """
    Parse a single JSON line into a SensorReading.

    Raises
    ------
    pydantic.ValidationError
        If the line is not valid JSON or does not match the reading schema.
    """
    return SensorReading.model_validate_json(line)


def parse_readings(file_path: str) -> Iterator[SensorReading]:
    """
    Yield readings from a capture file, skipping blank and malformed lines.

    Parameters
    ----------
    file_path : str
        Path to a JSON-lines capture.

    Returns
    -------
    Iterator[SensorReading]
        Readings in file order.
    """
    skipped = 0
    with open(file_path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield parse_reading_line(line)
            except ValidationError as e:
                skipped += 1
                logger.warning("%s:%d: skipping malformed reading (%d errors)", file_path, lineno, e.error_count())
    if skipped:
        logger.info("Skipped %d malformed readings in %s", skipped, file_path)
