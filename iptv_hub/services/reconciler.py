"""Carry user-owned state from a saved snapshot onto freshly parsed channels."""
import dataclasses
from typing import Dict, Iterable, List, Mapping

from ..models.channel import Channel


def reconcile(
    fresh: Iterable[Channel],
    snapshot: Iterable[Channel],
    memberships: Mapping[str, Iterable[str]],
) -> List[Channel]:
    """Merge ``fresh`` channels with the persisted ``snapshot``.

    Each fresh channel keeps its own ``playlist_id``. When it matches a saved
    channel (by stable key, else by surrogate id) it takes that channel's
    ``category_ids`` and ``is_favorite``. The membership index is applied
    afterwards and only ever adds categories. Input channels are not mutated.
    """
    by_stable_key: Dict[str, Channel] = {}
    by_id: Dict[str, Channel] = {}
    for saved in snapshot:
        # First occurrence wins so later duplicates can't clobber established state
        by_stable_key.setdefault(saved.stable_key, saved)
        by_id.setdefault(saved.id, saved)

    merged = []
    for channel in fresh:
        saved = by_stable_key.get(channel.stable_key) or by_id.get(channel.id)
        if saved is None:
            merged.append(dataclasses.replace(channel, category_ids=set(channel.category_ids)))
        else:
            merged.append(dataclasses.replace(
                channel,
                category_ids=set(saved.category_ids),
                is_favorite=saved.is_favorite,
                playlist_id=channel.playlist_id,
            ))

    return apply_memberships(merged, memberships)


def apply_memberships(channels: List[Channel], memberships: Mapping[str, Iterable[str]]) -> List[Channel]:
    """Add each category to the channels whose stable key it lists (in place)."""
    if not memberships:
        return channels

    by_stable_key: Dict[str, List[Channel]] = {}
    for channel in channels:
        by_stable_key.setdefault(channel.stable_key, []).append(channel)

    for category_id, stable_keys in memberships.items():
        for key in stable_keys:
            for channel in by_stable_key.get(key, ()):
                channel.category_ids.add(category_id)
    return channels
