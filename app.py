import os
from pathlib import Path

from playit import create_app
from playit.config import load_config
from playit.logging import get_logger, with_context
from playit.storage import DB


def build_app():
    # Settings table lives beside the queue when SQLite is configured
    cfg = load_config()
    if cfg['store'] == 'sqlite':
        cfg = load_config(DB(Path(cfg['db_path'])))
    log, _ = with_context(get_logger('playit.app'))
    log.info(f"queue store={cfg['store']} capacity={cfg['capacity']}")
    if not (cfg['spotify_client_id'] and cfg['spotify_client_secret']):
        log.warning("SPOTIFY_CLIENT_ID/SPOTIFY_CLIENT_SECRET not set; catalog lookups and playlist export disabled")
    return create_app(config=cfg)


if __name__ == '__main__':
    app = build_app()
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 3001)))
