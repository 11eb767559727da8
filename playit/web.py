from typing import Dict, Optional

import requests
from flask import Blueprint, jsonify, request

from .logging import get_logger, with_context
from .queue import DUPLICATE, VotingQueue
from .spotify_client import SpotifyClient
from .storage import StoreUnavailable
from .tracks import InvalidTrack

_REJECT_MESSAGES = {
    DUPLICATE: "Track already in queue",
}


def queue_payload(state: Dict) -> Dict:
    return {
        'tracks': state['tracks'],
        'last_updated': state['last_updated'],
        'lastUpdated': state['last_updated'],
    }


def _replace_all(body: Dict) -> bool:
    return body.get('replaceAll') is True or body.get('replace_all') is True


def _bearer_token() -> Optional[str]:
    header = request.headers.get('Authorization') or ''
    if not header.startswith('Bearer '):
        return None
    return header[len('Bearer '):].strip() or None


def init_web(app, queue: VotingQueue, spotify: Optional[SpotifyClient] = None):
    bp = Blueprint('queue', __name__)
    logger = get_logger(__name__)

    @bp.get('/api/queue')
    def get_queue():
        since = request.args.get('since')
        if since:
            try:
                cursor = int(float(since))
            except (ValueError, OverflowError):
                cursor = None
            if cursor is not None:
                state = queue.get_queue_if_updated(cursor)
                if state is None:
                    return jsonify({'updated': False}), 200
                return jsonify({'updated': True, **queue_payload(state)}), 200
        return jsonify(queue_payload(queue.get_queue())), 200

    @bp.post('/api/queue')
    def add_to_queue():
        body = request.get_json(force=True, silent=True) or {}
        if not isinstance(body, dict):
            return jsonify({"error": "Invalid request body"}), 400

        if isinstance(body.get('tracks'), list):
            added = queue.add_tracks(body['tracks'], replace_all=_replace_all(body))
            return jsonify({
                "success": True,
                "added": len(added),
                "skipped": len(body['tracks']) - len(added),
                "tracks": added,
                "queue": queue_payload(queue.get_queue()),
            }), 200

        spotify_id = body.get('spotifyId') or body.get('spotify_id')
        if spotify_id:
            raw = dict(body)
            if not raw.get('name') and spotify and spotify.configured():
                try:
                    raw = spotify.get_track(spotify_id, added_by=raw.get('addedBy') or raw.get('added_by'))
                except RuntimeError as e:
                    if str(e) == "spotify_not_found":
                        return jsonify({"error": "Track not found in catalog"}), 404
                    with_context(logger)[0].error(f"track lookup for {spotify_id} failed: {e}")
                    return jsonify({"error": "Failed to look up track details"}), 502
                except requests.RequestException as e:
                    with_context(logger)[0].error(f"track lookup for {spotify_id} failed: {e}")
                    return jsonify({"error": "Failed to look up track details"}), 502
            track, reason = queue.add_track(raw)
            if track is None:
                message = _REJECT_MESSAGES.get(reason) or f"Queue is full (max {queue.capacity})"
                return jsonify({"error": message, "reason": reason}), 409
            return jsonify({
                "success": True,
                "track": track,
                "queue": queue_payload(queue.get_queue()),
            }), 200

        return jsonify({"error": "Invalid request body"}), 400

    @bp.post('/api/queue/import')
    def import_playlist():
        body = request.get_json(force=True, silent=True) or {}
        if not isinstance(body, dict):
            return jsonify({"error": "Invalid request body"}), 400
        playlist_id = str(body.get('playlistId') or body.get('playlist_id') or '').strip()
        if not playlist_id:
            return jsonify({"error": "playlistId is required"}), 400
        if not spotify or not spotify.configured():
            return jsonify({"error": "Spotify is not configured"}), 503
        try:
            tracks = spotify.playlist_tracks(playlist_id, added_by=body.get('addedBy') or body.get('added_by'))
        except RuntimeError as e:
            msg = str(e)
            if msg == 'spotify_not_found':
                return jsonify({"error": "Playlist not found or not available in your region"}), 404
            with_context(logger)[0].error(f"playlist import {playlist_id} failed: {msg}")
            return jsonify({"error": "Failed to fetch playlist"}), 502
        except requests.RequestException as e:
            with_context(logger)[0].error(f"playlist import {playlist_id} failed: {e}")
            return jsonify({"error": "Failed to fetch playlist"}), 502
        if not tracks:
            return jsonify({"error": "Playlist has no playable tracks"}), 400
        added = queue.add_tracks(tracks, replace_all=_replace_all(body))
        return jsonify({
            "success": True,
            "added": len(added),
            "skipped": len(tracks) - len(added),
            "queue": queue_payload(queue.get_queue()),
        }), 200

    @bp.delete('/api/queue')
    def clear_queue():
        queue.clear_queue()
        return jsonify({"success": True, "queue": queue_payload(queue.get_queue())}), 200

    @bp.delete('/api/queue/<spotify_id>')
    def remove_track(spotify_id):
        if not queue.remove_track(spotify_id):
            return jsonify({"error": "Track not found in queue"}), 404
        return jsonify({"success": True, "queue": queue_payload(queue.get_queue())}), 200

    @bp.post('/api/queue/remove')
    def remove_tracks():
        body = request.get_json(force=True, silent=True) or {}
        track_ids = body.get('trackIds') if isinstance(body, dict) else None
        if track_ids is None and isinstance(body, dict):
            track_ids = body.get('track_ids')
        if not isinstance(track_ids, list) or not track_ids:
            return jsonify({"error": "trackIds array is required"}), 400
        removed = queue.remove_tracks(track_ids)
        return jsonify({
            "success": True,
            "removed": removed,
            "queue": queue_payload(queue.get_queue()),
        }), 200

    @bp.post('/api/queue/vote')
    def vote():
        body = request.get_json(force=True, silent=True) or {}
        spotify_id = (body.get('spotifyId') or body.get('spotify_id')) if isinstance(body, dict) else None
        if not spotify_id or not isinstance(spotify_id, str):
            return jsonify({"error": "spotifyId is required"}), 400
        track = queue.upvote_track(spotify_id)
        if track is None:
            return jsonify({"error": "Track not found in queue"}), 404
        return jsonify({
            "success": True,
            "track": track,
            "queue": queue_payload(queue.get_queue()),
        }), 200

    @bp.get('/api/queue/uris')
    def queue_uris():
        return jsonify({"uris": queue.track_uris_sorted_by_votes()}), 200

    @bp.post('/api/playlist/export')
    def export_playlist():
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Unauthorized"}), 401
        if not spotify:
            return jsonify({"error": "Spotify is not configured"}), 503
        body = request.get_json(force=True, silent=True) or {}
        if not isinstance(body, dict):
            return jsonify({"error": "Invalid request body"}), 400
        uris = body.get('trackUris')
        if not isinstance(uris, list) or not uris:
            uris = queue.track_uris_sorted_by_votes()
        try:
            result = spotify.export_playlist(
                token,
                str(body.get('name') or ''),
                uris,
                description=body.get('description'),
                public=body.get('public') is True,
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except RuntimeError as e:
            if str(e) == 'spotify_unauthorized':
                return jsonify({"error": "Invalid session or not logged in"}), 401
            with_context(logger)[0].error(f"playlist export failed: {e}")
            return jsonify({"error": "Failed to create/update playlist"}), 502
        except requests.RequestException as e:
            with_context(logger)[0].error(f"playlist export failed: {e}")
            return jsonify({"error": "Failed to create/update playlist"}), 502
        status = 207 if result.get('warning') else 200
        return jsonify({"success": status == 200, **result}), status

    @bp.errorhandler(InvalidTrack)
    def invalid_track(e):
        return jsonify({"error": str(e)}), 400

    @bp.errorhandler(StoreUnavailable)
    def store_unavailable(e):
        with_context(logger)[0].error(f"queue store unavailable: {e}")
        return jsonify({"error": "Queue storage unavailable"}), 503

    app.register_blueprint(bp)
