from typing import Dict, List, Optional, Tuple

from .logging import get_logger, with_context
from .tracks import (
    InvalidTrack,
    make_track_id,
    normalize_track,
    normalize_tracks,
    now_ms,
    sort_by_votes,
    track_uri,
)

DEFAULT_CAPACITY = 30

DUPLICATE = 'duplicate'
QUEUE_FULL = 'queue_full'


def _bump(state: Dict) -> int:
    # Strictly increasing even when two mutations share a millisecond
    stamp = max(now_ms(), int(state.get('last_updated') or 0) + 1)
    state['last_updated'] = stamp
    return stamp


def _sorted_view(state: Dict) -> Dict:
    return {
        'tracks': sort_by_votes(state['tracks']),
        'last_updated': state['last_updated'],
    }


class VotingQueue:
    """Shared voting queue operations over an injected store.

    Every mutation is a single ``store.update`` call, so admission checks
    (duplicates, capacity) see the same state that gets written.
    """

    def __init__(self, store, capacity: int = DEFAULT_CAPACITY):
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
            raise ValueError("capacity must be a positive integer")
        self.store = store
        self.capacity = capacity
        self.logger = get_logger(__name__)

    # Reads

    def get_queue(self) -> Dict:
        return _sorted_view(self.store.read())

    def get_queue_if_updated(self, since: int) -> Optional[Dict]:
        state = self.store.read()
        if state['last_updated'] > since:
            return _sorted_view(state)
        return None

    def track_uris_sorted_by_votes(self) -> List[str]:
        return [track_uri(t) for t in self.get_queue()['tracks']]

    # Mutations

    def add_track(self, raw: Dict) -> Tuple[Optional[Dict], Optional[str]]:
        track = normalize_track(raw)
        log, _ = with_context(self.logger)

        def mutate(state):
            if any(t['spotify_id'] == track['spotify_id'] for t in state['tracks']):
                return None, (None, DUPLICATE)
            if len(state['tracks']) >= self.capacity:
                return None, (None, QUEUE_FULL)
            added_at = now_ms()
            entry = dict(track)
            entry['id'] = make_track_id(track['spotify_id'], added_at)
            entry['votes'] = 0
            entry['added_at'] = added_at
            state['tracks'].append(entry)
            _bump(state)
            return state, (dict(entry), None)

        created, reason = self.store.update(mutate)
        if created is None:
            log.info(f"add {track['spotify_id']} rejected: {reason}")
        else:
            log.info(f"added {track['spotify_id']} as {created['id']}")
        return created, reason

    def add_tracks(self, raws: List[Dict], replace_all: bool = False) -> List[Dict]:
        tracks = normalize_tracks(raws)
        log, _ = with_context(self.logger)

        def mutate(state):
            if replace_all:
                state['tracks'] = []
            seen = {t['spotify_id'] for t in state['tracks']}
            admitted = []
            for track in tracks:
                if len(state['tracks']) >= self.capacity:
                    break
                if track['spotify_id'] in seen:
                    continue
                added_at = now_ms()
                entry = dict(track)
                entry['id'] = make_track_id(track['spotify_id'], added_at, with_suffix=True)
                entry['votes'] = 0
                entry['added_at'] = added_at
                state['tracks'].append(entry)
                seen.add(track['spotify_id'])
                admitted.append(dict(entry))
            _bump(state)
            return state, admitted

        admitted = self.store.update(mutate)
        log.info(
            f"bulk add: {len(admitted)} admitted, {len(tracks) - len(admitted)} skipped"
            f"{' (replaced queue)' if replace_all else ''}"
        )
        return admitted

    def remove_track(self, spotify_id: str) -> bool:
        if not isinstance(spotify_id, str) or not spotify_id:
            raise InvalidTrack("spotify_id is required")
        log, _ = with_context(self.logger)

        def mutate(state):
            for i, t in enumerate(state['tracks']):
                if t['spotify_id'] == spotify_id:
                    del state['tracks'][i]
                    _bump(state)
                    return state, True
            return None, False

        removed = self.store.update(mutate)
        log.info(f"remove {spotify_id}: {'removed' if removed else 'not found'}")
        return removed

    def remove_tracks(self, track_ids: List[str]) -> int:
        if not isinstance(track_ids, list) or not track_ids:
            raise InvalidTrack("track ids must be a non-empty list")
        wanted = {str(i) for i in track_ids}
        log, _ = with_context(self.logger)

        def mutate(state):
            kept = [t for t in state['tracks'] if t['id'] not in wanted]
            count = len(state['tracks']) - len(kept)
            if count == 0:
                return None, 0
            state['tracks'] = kept
            _bump(state)
            return state, count

        count = self.store.update(mutate)
        log.info(f"bulk remove: {count} of {len(wanted)} removed")
        return count

    def upvote_track(self, spotify_id: str) -> Optional[Dict]:
        if not isinstance(spotify_id, str) or not spotify_id:
            raise InvalidTrack("spotify_id is required")
        log, _ = with_context(self.logger)

        def mutate(state):
            for t in state['tracks']:
                if t['spotify_id'] == spotify_id:
                    t['votes'] = int(t.get('votes', 0)) + 1
                    _bump(state)
                    return state, dict(t)
            return None, None

        track = self.store.update(mutate)
        if track is None:
            log.info(f"upvote {spotify_id}: not found")
        else:
            log.info(f"upvote {spotify_id}: {track['votes']} votes")
        return track

    def clear_queue(self) -> None:
        log, _ = with_context(self.logger)

        def mutate(state):
            state['tracks'] = []
            _bump(state)
            return state, None

        self.store.update(mutate)
        log.info("queue cleared")
