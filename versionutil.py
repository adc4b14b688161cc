"""Dotted version string helpers used by :mod:`mysql_setup`.

``compare_versions`` orders two dotted-numeric strings such as ``5.9`` and
``6.2``.  Segments are zero-padded to a common width before a plain string
comparison, which makes ``9`` sort before ``10`` without parsing integers.

Note that the comparison walks the segments of the *first* argument only.
``compare_versions("1.2", "1.2.3")`` therefore falls through to the segment
count check instead of inspecting ``3``.  Callers that pick the newest
shared library rely on this ordering, so it is kept as is.
"""
from __future__ import annotations

import logging
import pathlib
import re
from typing import Union

LOG = logging.getLogger(__name__)

_VERSION_IN_NAME = re.compile(r"\.([0-9.]+)")


def compare_versions(version1: str, version2: str) -> int:
    """Return ``-1``, ``0`` or ``1`` ordering ``version1`` against ``version2``."""

    if not version1:
        return 0 if not version2 else -1
    if not version2:
        return 1

    pieces1 = version1.split(".")
    pieces2 = version2.split(".")
    count1 = len(pieces1)
    count2 = len(pieces2)

    for index in range(count1):
        if index > count2 - 1:
            return 1

        piece1 = pieces1[index]
        piece2 = pieces2[index]
        width = max(len(piece1), len(piece2))
        piece1 = piece1.rjust(width, "0")
        piece2 = piece2.rjust(width, "0")

        if piece1 > piece2:
            return 1
        if piece1 < piece2:
            return -1

    if count1 > count2:
        return 1
    if count1 == count2:
        return 0
    return -1


def find_latest_version_file(directory: Union[str, pathlib.Path], prefix: str) -> str:
    """Return the path under ``directory`` starting with ``prefix`` that has the newest version.

    The version is the first ``.<digits>`` run in the file name, e.g. ``5.9``
    for ``libncurses.so.5.9``.  Files without a version are ignored.  An empty
    string is returned when nothing matches.
    """

    root = pathlib.Path(directory)
    try:
        candidates = sorted(root.glob(prefix + "*"))
    except (OSError, ValueError) as exc:
        LOG.debug("Unable to list %s/%s*: %s", root, prefix, exc)
        return ""

    result = ""
    latest = ""
    for path in candidates:
        match = _VERSION_IN_NAME.search(path.name)
        if not match:
            continue
        version = match.group(1)
        if not latest or compare_versions(latest, version) < 0:
            latest = version
            result = str(path)
    if result:
        LOG.debug("Latest %s* in %s is %s (version %s)", prefix, root, result, latest)
    return result
