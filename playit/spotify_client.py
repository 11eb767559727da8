import base64
import threading
import time
from typing import Dict, List, Optional

import requests

from .logging import get_logger, with_context
from .tracks import InvalidTrack, track_from_spotify

TOKEN_URL = "https://accounts.spotify.com/api/token"
API_URL = "https://api.spotify.com/v1"
PLAYLIST_CHUNK = 100


class SpotifyClient:
    """Catalog lookups with an app token and playlist export with a user token.

    The app token comes from the client-credentials flow and is cached until
    five minutes before it expires. User tokens are supplied per call by the
    session layer and never stored here.
    """

    def __init__(self, client_id: str, client_secret: str, http: Optional[requests.Session] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.http = http or requests.Session()
        self.logger = get_logger(__name__)
        self._token_lock = threading.Lock()
        self._token: Optional[str] = None
        self._token_expiry = 0.0

    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def app_token(self) -> str:
        with self._token_lock:
            if self._token and time.time() < self._token_expiry:
                return self._token
            if not self.configured():
                raise RuntimeError("not_configured")
            basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode('utf-8')).decode('ascii')
            headers = {
                "Content-Type": "application/x-www-form-urlencoded",
                "Authorization": f"Basic {basic}",
            }
            log, _ = with_context(self.logger, attempt=1)
            resp = self.http.post(TOKEN_URL, data={"grant_type": "client_credentials"}, headers=headers, timeout=15)
            if not resp.ok:
                log.error(f"spotify token request failed: HTTP {resp.status_code}")
                raise RuntimeError(f"spotify_token_failed_http_{resp.status_code}")
            info = resp.json()
            self._token = info.get("access_token")
            if not self._token:
                raise RuntimeError("spotify_token_failed")
            self._token_expiry = time.time() + max(int(info.get("expires_in", 3600)) - 300, 0)
            log.info("spotify app token obtained")
            return self._token

    def _get(self, url: str, token: str, params: Optional[Dict] = None) -> Dict:
        headers = {"Authorization": f"Bearer {token}"}
        r = self.http.get(url, headers=headers, params=params, timeout=15)
        if r.status_code == 401:
            raise RuntimeError("spotify_unauthorized")
        if r.status_code == 404:
            raise RuntimeError("spotify_not_found")
        if r.status_code == 429:
            retry_after = int(r.headers.get('Retry-After', 60))
            with_context(self.logger, attempt=1)[0].warning(f"Spotify rate limited, retry in {retry_after} seconds")
            raise RuntimeError(f"rate_limited:{retry_after}")
        r.raise_for_status()
        return r.json()

    def get_track(self, spotify_id: str, added_by: Optional[str] = None) -> Dict:
        data = self._get(f"{API_URL}/tracks/{spotify_id}", self.app_token())
        return track_from_spotify(data, added_by=added_by)

    def playlist_tracks(self, playlist_id: str, added_by: Optional[str] = None) -> List[Dict]:
        token = self.app_token()
        url: Optional[str] = f"{API_URL}/playlists/{playlist_id}/tracks"
        params: Optional[Dict] = {"additional_types": "track", "limit": 100, "market": "US"}
        items: List[Dict] = []
        while url:
            data = self._get(url, token, params=params)
            for it in data.get("items", []):
                tr = (it or {}).get("track") or {}
                if not tr or tr.get("is_local") or tr.get("episode") or not tr.get("id"):
                    continue
                try:
                    items.append(track_from_spotify(tr, added_by=added_by))
                except InvalidTrack:
                    continue
            # "next" already carries the query string
            url = data.get("next")
            params = None
        return items

    def _find_user_playlist(self, user_token: str, user_id: str, name: str) -> Optional[Dict]:
        url: Optional[str] = f"{API_URL}/me/playlists?limit=50"
        wanted = name.lower()
        while url:
            data = self._get(url, user_token)
            for p in data.get("items", []) or []:
                if not p:
                    continue
                if (p.get("name") or '').lower() == wanted and (p.get("owner") or {}).get("id") == user_id:
                    return p
            url = data.get("next")
        return None

    def _send(self, method: str, url: str, user_token: str, body: Dict) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {user_token}",
            "Content-Type": "application/json",
        }
        return self.http.request(method, url, headers=headers, json=body, timeout=15)

    def export_playlist(
        self,
        user_token: str,
        name: str,
        uris: List[str],
        description: Optional[str] = None,
        public: bool = False,
    ) -> Dict:
        """Create, or replace the contents of, the user's playlist called ``name``.

        Tracks are written in order, 100 per request. A partial failure after
        the playlist exists is reported through ``warning`` rather than raised.
        """
        if not name or not name.strip():
            raise ValueError("playlist name is required")
        if not uris:
            raise ValueError("at least one track is required")
        name = name.strip()
        log, _ = with_context(self.logger, attempt=1)
        me = self._get(f"{API_URL}/me", user_token)
        user_id = me.get("id")
        if not user_id:
            raise RuntimeError("spotify_unauthorized")

        existing = self._find_user_playlist(user_token, user_id, name)
        updated = existing is not None
        if existing:
            playlist = existing
            self._send("PUT", f"{API_URL}/playlists/{playlist['id']}", user_token,
                       {"description": description or "Updated with PlayIt"})
            # PUT replaces the first chunk; the rest are appended
            r = self._send("PUT", f"{API_URL}/playlists/{playlist['id']}/tracks", user_token,
                           {"uris": uris[:PLAYLIST_CHUNK]})
            if not r.ok:
                log.error(f"replacing playlist tracks failed: HTTP {r.status_code}")
                raise RuntimeError(f"spotify_playlist_update_failed_http_{r.status_code}")
            remaining = uris[PLAYLIST_CHUNK:]
        else:
            r = self._send("POST", f"{API_URL}/users/{user_id}/playlists", user_token, {
                "name": name,
                "description": description or "Created with PlayIt",
                "public": bool(public),
            })
            if not r.ok:
                log.error(f"creating playlist failed: HTTP {r.status_code}")
                raise RuntimeError(f"spotify_playlist_create_failed_http_{r.status_code}")
            playlist = r.json()
            remaining = list(uris)

        result = {
            'updated': updated,
            'playlist': {
                'id': playlist.get('id'),
                'name': playlist.get('name') or name,
                'external_urls': playlist.get('external_urls') or {},
                'tracks_added': len(uris),
            },
        }
        for i in range(0, len(remaining), PLAYLIST_CHUNK):
            chunk = remaining[i:i + PLAYLIST_CHUNK]
            r = self._send("POST", f"{API_URL}/playlists/{playlist['id']}/tracks", user_token, {"uris": chunk})
            if not r.ok:
                log.warning(f"adding playlist tracks failed: HTTP {r.status_code}")
                result['warning'] = "Playlist saved but some tracks could not be added"
                break
        log.info(f"{'updated' if updated else 'created'} playlist {result['playlist']['id']} with {len(uris)} tracks")
        return result
