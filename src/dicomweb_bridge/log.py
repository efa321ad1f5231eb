"""Utility functions for logging configuration"""
import sys
import logging
from typing import Optional

#: Loggers of libraries whose messages follow the verbosity of the bridge
THIRD_PARTY_LOGGERS = ('urllib3', 'werkzeug')

_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG)


class _MultipartHeaderFilter(logging.Filter):

    """Drops ``urllib3`` complaints about headers of multipart responses.

    Many DICOMweb servers answer with multipart messages whose headers
    ``urllib3`` fails to parse (see
    https://github.com/urllib3/urllib3/issues/800), although the responses
    are valid.

    """

    def filter(self, record: logging.LogRecord) -> bool:
        return 'Failed to parse headers' not in record.getMessage()


def get_level(verbosity: int) -> int:
    """Gets the logging level for a number of ``-v`` flags.

    Parameters
    ----------
    verbosity: int
        logging verbosity (e.g. ``2``)

    Returns
    -------
    int
        logging level (e.g. ``logging.INFO``)

    """
    return _LEVELS[max(0, min(verbosity, len(_LEVELS) - 1))]


def _create_formatter(with_line_numbers: bool) -> logging.Formatter:
    columns = ['%(asctime)s', '%(levelname)-8s', '%(name)-32s']
    if with_line_numbers:
        columns.append('%(lineno)-4s')
    columns.append('%(message)s')
    return logging.Formatter(
        fmt=' | '.join(columns),
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def configure_logging(
    verbosity: int,
    stream: Optional[object] = None
) -> logging.Logger:
    """Configures logging of the command line program.

    Messages of the bridge, of the HTTP client library (``urllib3``) and of
    the embedded web server (``werkzeug``) are written to standard error,
    so that answers printed on standard output can be redirected
    independently.

    Logging verbosity maps to levels as follows::

            0 -> CRITICAL & ERROR messages
            1 -> CRITICAL, ERROR & WARNING messages
            2 -> CRITICAL, ERROR, WARNING & INFO messages
            3 -> all messages
            4 -> all messages, including line numbers

    Parameters
    ----------
    verbosity: int
        logging verbosity
    stream: Union[object, None], optional
        file-like object the messages are written to (default:
        ``sys.stderr``)

    Returns
    -------
    logging.Logger
        package root logger

    """
    handler = logging.StreamHandler(
        stream=stream if stream is not None else sys.stderr
    )
    handler.name = 'stderr'
    handler.setFormatter(_create_formatter(verbosity > 3))

    root_logger = logging.getLogger()
    if not any(h.name == handler.name for h in root_logger.handlers):
        root_logger.addHandler(handler)
    root_logger.setLevel(logging.ERROR)

    level = get_level(verbosity)
    pkg_logger = logging.getLogger(__name__.split('.')[0])
    pkg_logger.setLevel(level)
    for name in THIRD_PARTY_LOGGERS:
        third_party_logger = logging.getLogger(name)
        third_party_logger.setLevel(level)
        third_party_logger.propagate = True
    logging.getLogger('urllib3.connectionpool').addFilter(
        _MultipartHeaderFilter()
    )
    return pkg_logger
