"""
Result printer: logs every document of a result as pretty Ion text.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from amazon.ion.simpleion import dumps

logger = logging.getLogger(__name__)


def to_pretty_string(value: Any) -> str:
    """Render an Ion value as indented Ion text."""
    return dumps(value, binary=False, indent="  ", omit_version_marker=True)


def print_documents(result: Iterable[Any], log: Optional[logging.Logger] = None) -> int:
    """Log each document of a result, consuming it once.

    Args:
        result: A pyqldb StreamCursor (single pass) or BufferedCursor
        log: Logger to emit to (defaults to this module's logger)

    Returns:
        Number of documents printed
    """
    log = log or logger
    count = 0
    for document in result:
        log.info(to_pretty_string(document))
        count += 1
    return count
