import logging
import os
from enum import StrEnum

from gcpubsub.exceptions import GCPubSubCLIException


class LogLevels(StrEnum):
    """A class to represent log levels."""

    critical = "CRITICAL"
    error = "ERROR"
    warning = "WARNING"
    info = "INFO"
    debug = "DEBUG"


LOGGING_LEVEL_MAP: dict[str, int] = {
    LogLevels.critical: logging.CRITICAL,
    LogLevels.error: logging.ERROR,
    LogLevels.warning: logging.WARNING,
    LogLevels.info: logging.INFO,
    LogLevels.debug: logging.DEBUG,
}


def get_log_level(level: LogLevels | str | int) -> int:
    """Get the log level.

    Args:
        level: The log level to get. Can be an integer, a LogLevels enum value, or a string.

    Returns:
        The log level as an integer.
    """
    if isinstance(level, int):
        return level

    if isinstance(level, str) and level.upper() in LOGGING_LEVEL_MAP:
        return LOGGING_LEVEL_MAP[level.upper()]

    possible_values = [member.value for member in LogLevels]
    raise GCPubSubCLIException(
        f"Invalid value for '--log-level', it should be one of {possible_values}"
    )


def parse_attributes(raw_attributes: list[str] | None) -> dict[str, str]:
    """Parses 'key=value' pairs into a dictionary of message attributes."""
    attributes: dict[str, str] = {}
    for raw_attribute in raw_attributes or []:
        key, separator, value = raw_attribute.partition("=")
        key = key.strip()
        if not separator or not key:
            raise GCPubSubCLIException(
                f"Invalid attribute '{raw_attribute}', it should follow the 'key=value' format"
            )
        attributes[key] = value

    return attributes


def ensure_pubsub_credentials() -> None:
    credentials = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    emulator_host = os.getenv("PUBSUB_EMULATOR_HOST")
    if not credentials and not emulator_host:
        raise GCPubSubCLIException(
            "You should set either of the environment variables for authentication:"
            " (GOOGLE_APPLICATION_CREDENTIALS, PUBSUB_EMULATOR_HOST)"
        )
