"""
Wall-clock timestamp parsing for run start and end times.
"""

from typing import Union
import calendar
import re
from datetime import datetime

_TIMESTAMP = re.compile(
    r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})T(\d{1,2}):(\d{1,2}):(\d{1,2})"
)


def parse_epoch(text: Union[str, bytes]) -> int:
    """
    Convert a ``YYYY-MM-DDTHH:MM:SS`` timestamp to Unix time.

    The timestamp is interpreted as UTC, not in the host's local time
    zone, so the result does not depend on the machine. Anything
    following the seconds field (fractional seconds, a zone designator)
    is ignored.

    Parameters
    ----------
    text : str or bytes
        Timestamp as stored in the run file.

    Returns
    -------
    int
        Seconds since the Unix epoch.

    Raises
    ------
    ValueError
        If the text does not start with a valid timestamp.

    Examples
    --------
    >>> parse_epoch('1970-01-01T00:01:40')
    100
    >>> parse_epoch(b'2023-05-04T10:00:00+01:00')
    1683194400
    """
    if isinstance(text, bytes):
        text = text.decode('utf-8', errors='replace')

    match = _TIMESTAMP.match(text)
    if match is None:
        raise ValueError(f"Malformed timestamp {text!r}; expected YYYY-MM-DDTHH:MM:SS")

    fields = [int(group) for group in match.groups()]
    try:
        moment = datetime(*fields)
    except ValueError as e:
        raise ValueError(f"Invalid timestamp {text!r}: {e}") from e
    return calendar.timegm(moment.timetuple())
