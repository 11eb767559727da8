from typing import Dict, Optional

from flask import Flask, jsonify

from .config import load_config
from .queue import VotingQueue
from .spotify_client import SpotifyClient
from .storage import open_store
from .web import init_web


def create_app(queue: Optional[VotingQueue] = None, spotify: Optional[SpotifyClient] = None, config: Optional[Dict] = None):
    app = Flask(__name__)
    cfg = config if config is not None else load_config()
    app.config['PLAYIT'] = cfg

    if queue is None:
        queue = VotingQueue(open_store(cfg), capacity=int(cfg.get('capacity') or 30))
    if spotify is None and cfg.get('spotify_client_id') and cfg.get('spotify_client_secret'):
        spotify = SpotifyClient(cfg['spotify_client_id'], cfg['spotify_client_secret'])
    app.extensions['playit_queue'] = queue

    @app.get('/healthz')
    def healthz():
        ok = queue.store.ping()
        return jsonify({
            'ok': ok,
            'capacity': queue.capacity,
            'poll_interval': cfg.get('poll_interval'),
        }), (200 if ok else 503)

    init_web(app, queue, spotify)
    return app
