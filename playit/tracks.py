"""Shape inbound track descriptions into queued-track records.

A queued track is a plain dict. ``normalize_track`` produces every field
except ``id``, ``votes`` and ``added_at``; those are assigned by the queue
at admission time.
"""
import random
import string
import time
from typing import Dict, Iterable, List, Optional

SPOTIFY_URI_PREFIX = "spotify:track:"

# camelCase names sent by browser clients -> stored field names
_ALIASES = {
    'spotifyId': 'spotify_id',
    'albumName': 'album_name',
    'albumArt': 'album_art',
    'durationMs': 'duration_ms',
    'addedBy': 'added_by',
}

_ID_SUFFIX_CHARS = string.ascii_lowercase + string.digits


class InvalidTrack(ValueError):
    pass


def now_ms() -> int:
    return int(time.time() * 1000)


def _pick(raw: Dict, key: str):
    if key in raw:
        return raw[key]
    for alias, target in _ALIASES.items():
        if target == key and alias in raw:
            return raw[alias]
    return None


def _text(value) -> str:
    if value is None:
        return ''
    return str(value)


def normalize_track(raw: Dict) -> Dict:
    """Validate ``raw`` and return the caller-supplied part of a queued track.

    Optional fields (``album_art``, ``added_by``) are left out entirely when
    missing so display layers can apply their own fallback.
    """
    if not isinstance(raw, dict):
        raise InvalidTrack("track must be an object")
    spotify_id = _pick(raw, 'spotify_id')
    if not isinstance(spotify_id, str) or not spotify_id.strip():
        raise InvalidTrack("spotify_id is required")

    duration = _pick(raw, 'duration_ms')
    if duration is None:
        duration = 0
    if isinstance(duration, bool):
        raise InvalidTrack("duration_ms must be an integer")
    try:
        duration = int(duration)
    except (TypeError, ValueError):
        raise InvalidTrack("duration_ms must be an integer")
    if duration < 0:
        raise InvalidTrack("duration_ms must be non-negative")

    track = {
        'spotify_id': spotify_id.strip(),
        'name': _text(_pick(raw, 'name')),
        'artists': _text(_pick(raw, 'artists')),
        'album_name': _text(_pick(raw, 'album_name')),
        'duration_ms': duration,
    }
    album_art = _pick(raw, 'album_art')
    if album_art:
        track['album_art'] = str(album_art)
    added_by = _pick(raw, 'added_by')
    if added_by:
        track['added_by'] = str(added_by)
    return track


def normalize_tracks(raws: Iterable[Dict]) -> List[Dict]:
    if not isinstance(raws, list) or not raws:
        raise InvalidTrack("tracks must be a non-empty list")
    return [normalize_track(r) for r in raws]


def track_from_spotify(item: Dict, added_by: Optional[str] = None) -> Dict:
    """Build a normalized track from a Spotify Web API track object.

    Playlist items wrap the track under ``track``; both shapes are accepted.
    Artist names are joined with ", " and the smallest album image is used
    as art, falling back to the first one.
    """
    item = item or {}
    # Track objects themselves carry a boolean "track" flag
    wrapped = item.get('track')
    tr = wrapped if isinstance(wrapped, dict) else item
    album = tr.get('album') or {}
    images = album.get('images') or []
    art = None
    if len(images) > 2:
        art = images[2].get('url')
    elif images:
        art = images[0].get('url')
    raw = {
        'spotify_id': tr.get('id'),
        'name': tr.get('name', ''),
        'artists': ", ".join(a.get('name', '') for a in (tr.get('artists') or [])),
        'album_name': album.get('name', ''),
        'album_art': art,
        'duration_ms': tr.get('duration_ms') or 0,
        'added_by': added_by,
    }
    return normalize_track(raw)


def make_track_id(spotify_id: str, added_at: int, with_suffix: bool = False) -> str:
    if not with_suffix:
        return f"{spotify_id}-{added_at}"
    suffix = ''.join(random.choices(_ID_SUFFIX_CHARS, k=5))
    return f"{spotify_id}-{added_at}-{suffix}"


def sort_by_votes(tracks: List[Dict]) -> List[Dict]:
    # sorted() is stable, so equal votes keep insertion order
    return sorted(tracks, key=lambda t: -int(t.get('votes', 0)))


def track_uri(track: Dict) -> str:
    return f"{SPOTIFY_URI_PREFIX}{track['spotify_id']}"
