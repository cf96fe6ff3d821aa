from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple

from .models import Message


class MergeMode(str, Enum):
    REPLACE = "replace"
    PREPEND_OLDER = "prepend_older"
    APPEND_LIVE = "append_live"


def merge_messages(
    existing: Sequence[Message],
    incoming: Iterable[Message],
    mode: MergeMode = MergeMode.APPEND_LIVE,
) -> List[Message]:
    """Merge-then-sort: dedupe by id, then order by ``created_at`` newest first.

    Both inputs are read newest-first. On an id collision the incoming copy
    wins. Messages with equal ``created_at`` keep arrival order, with later
    observations placed nearer the head. ``REPLACE`` discards ``existing``;
    the other modes differ only in which messages the caller supplies.
    """

    base: Sequence[Message] = () if mode is MergeMode.REPLACE else existing
    incoming = list(incoming)
    ranked: Dict[str, Tuple[Message, int]] = {}

    base_size = len(base)
    for index, message in enumerate(base):
        ranked[message.id] = (message, base_size - index)

    offset = base_size + len(incoming)
    for index, message in enumerate(incoming):
        ranked[message.id] = (message, offset + len(incoming) - index)

    ordered = sorted(ranked.values(), key=lambda entry: (entry[0].created_at, entry[1]), reverse=True)
    return [message for message, _ in ordered]
