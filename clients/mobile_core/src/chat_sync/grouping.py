"""Render hints for a newest-first message list.

Index 0 is the newest message, so the "older" neighbour of ``i`` is ``i + 1``
and the "newer" neighbour is ``i - 1``. A group is a maximal run of adjacent
messages from one sender where every adjacent gap is below the threshold.
"""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional, Sequence

from .models import GroupHint, Message

GROUP_THRESHOLD = timedelta(minutes=15)


def _gap_breaks(newer: Message, older: Message, threshold: timedelta) -> bool:
    return abs(newer.created_at - older.created_at) >= threshold


def _joins(newer: Message, older: Message, threshold: timedelta) -> bool:
    return newer.sender_id == older.sender_id and not _gap_breaks(newer, older, threshold)


def compute_group_hints(
    messages: Sequence[Message],
    viewer_id: Optional[str] = None,
    threshold: timedelta = GROUP_THRESHOLD,
) -> List[GroupHint]:
    count = len(messages)
    if count == 0:
        return []

    # joined[i] is True when messages[i] and its older neighbour share a group.
    joined = [i + 1 < count and _joins(messages[i], messages[i + 1], threshold) for i in range(count)]

    spans: List[tuple[int, int]] = [(0, 0)] * count
    start = 0
    for i in range(count):
        if not joined[i]:
            for j in range(start, i + 1):
                spans[j] = (start, i)
            start = i + 1

    hints: List[GroupHint] = []
    for i, message in enumerate(messages):
        is_oldest = i == count - 1
        show_divider = is_oldest or _gap_breaks(message, messages[i + 1], threshold)
        is_first = not joined[i]
        is_last = i == 0 or not joined[i - 1]
        group_start, group_end = spans[i]
        tail_index = group_start + (group_end - group_start + 1) // 2
        incoming = viewer_id is None or message.sender_id != viewer_id
        hints.append(
            GroupHint(
                is_first_in_group=is_first,
                is_last_in_group=is_last,
                is_group_tail=i == tail_index,
                show_divider=show_divider,
                show_avatar=incoming and is_last,
                group_start=group_start,
                group_end=group_end,
            )
        )
    return hints
