"""Tag set <-> comma-joined string conversion.

The comma-joined form is only how tags are stored and transmitted; every
set operation (dedup, intersection, counting) works on the decoded list.
"""

from typing import Iterable, List, Optional, Union


def parse_tags(raw: Union[str, Iterable[str], None]) -> List[str]:
    """Split, trim and deduplicate tags, keeping first-seen order."""
    if raw is None:
        return []
    if isinstance(raw, str):
        pieces = raw.split(",")
    else:
        pieces = []
        for item in raw:
            pieces.extend(str(item).split(","))

    tags: List[str] = []
    seen = set()
    for piece in pieces:
        tag = piece.strip()
        if tag and tag not in seen:
            seen.add(tag)
            tags.append(tag)
    return tags


def encode_tags(raw: Union[str, Iterable[str], None]) -> str:
    return ",".join(parse_tags(raw))


def tag_set(raw: Optional[str]) -> set:
    return set(parse_tags(raw))
