import uuid
from datetime import date


DURATION_CEILING = 1.1


def spotify_duration_seconds(track):
    return (track.get("duration_ms") or 0) / 1000


def fit_to_duration(tracks, target_seconds, duration_of=spotify_duration_seconds, ceiling=DURATION_CEILING):
    """
    Greedy in-order fit of tracks into a duration budget.

    Walks ``tracks`` once, accepting a track when the running total stays within
    ``ceiling * target_seconds`` and skipping it otherwise. A skipped track does not
    stop the walk, so a later shorter track can still be accepted. Order is preserved.
    This is not an optimal packing.

    Args:
        tracks (list): candidates in priority order
        target_seconds (float): duration budget in seconds
        duration_of (callable): track -> seconds
        ceiling (float): tolerated overshoot factor

    Returns:
        tuple: (accepted tracks, total seconds of accepted tracks)
    """
    limit = target_seconds * ceiling
    selected = []
    total = 0.0

    for track in tracks:
        duration = duration_of(track)
        if total + duration <= limit:
            selected.append(track)
            total += duration

    return selected, total


def dedupe_by_id(tracks, key="id"):
    """First occurrence of each id wins; input order is kept."""
    seen = set()
    unique = []
    for track in tracks:
        track_id = track.get(key)
        if track_id in seen:
            continue
        seen.add(track_id)
        unique.append(track)
    return unique


def apply_order(items, indices):
    """
    Pair items with new positions from an index permutation.

    Position ``n`` goes to ``items[indices[n]]``. Out-of-range indices are skipped,
    leaving a gap at that position. Duplicated or missing indices are not rejected:
    a duplicated item is paired twice and the later pairing wins when applied.

    Returns:
        list of (item, new_position)
    """
    pairs = []
    for new_position, original_index in enumerate(indices):
        if 0 <= original_index < len(items):
            pairs.append((items[original_index], new_position))
    return pairs


def split_interactions(tracks):
    """(hearted and not removed, removed) partitions of playlist tracks."""
    hearted = [t for t in tracks if t.is_hearted and not t.is_removed]
    removed = [t for t in tracks if t.is_removed]
    return hearted, removed


def new_session_key():
    return str(uuid.uuid4())


def today_string():
    return date.today().isoformat()


def clean_text(value):
    """Stripped string, or None for blanks and non-strings."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
