"""Presenter extraction from event descriptions.

Descriptions are HTML fragments from the calendar provider. A presenter is
announced as a labelled line, e.g. ``Referent: Jane Doe`` or
``Referent (Gast): Jane Doe``, delimited by ``<br>`` runs or by the start or
end of the text. The rest of the description is passed through unparsed.

Known limitation: the pattern is not anchored to the whole text and only the
first labelled block is extracted. A second presenter line stays in the body.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

DEFAULT_LABEL = "Referent"

_BREAK = r"(?i:<br\s*/?>)"


@dataclass(frozen=True)
class ExtractedFields:
    presenter: Optional[str]
    heading: Optional[str]
    body: str


@lru_cache(maxsize=16)
def _pattern(label: str) -> re.Pattern[str]:
    return re.compile(
        rf"(?P<lead>^|(?:{_BREAK})+)"
        rf"(?P<block>{re.escape(label)}[^:<]*:(?P<value>[^<]*))"
        rf"(?P<trail>$|(?:{_BREAK})+)"
    )


def extract_presenter(description: str, label: str = DEFAULT_LABEL) -> ExtractedFields:
    """Split the first presenter block out of ``description``.

    When the block sits between two break runs, the longer run is kept (the
    trailing one on a tie) so paragraph spacing around it survives. When it
    touches the start or end of the text, both runs are dropped.
    """
    match = _pattern(label).search(description)
    if match is None:
        return ExtractedFields(presenter=None, heading=None, body=description)

    lead, trail = match.group("lead"), match.group("trail")
    if lead and trail:
        keep = lead if len(lead) > len(trail) else trail
    else:
        keep = ""

    body = description[: match.start()] + keep + description[match.end() :]
    return ExtractedFields(
        presenter=match.group("value").strip(),
        heading=match.group("block").strip(),
        body=body,
    )
