import os
from typing import Dict, Optional

VALID_STORES = {"memory", "sqlite", "redis"}

DEFAULTS = {
    'store': 'memory',
    'db_path': 'playit.db',
    'redis_url': 'redis://localhost:6379/0',
    'queue_key': 'playit:queue',
    'queue_ttl': None,
    'capacity': 30,
    'poll_interval': 2.0,
    'spotify_client_id': '',
    'spotify_client_secret': '',
    'port': 3001,
}

_ENV = {
    'store': 'PLAYIT_STORE',
    'db_path': 'PLAYIT_DB',
    'redis_url': 'PLAYIT_REDIS_URL',
    'queue_key': 'PLAYIT_QUEUE_KEY',
    'queue_ttl': 'PLAYIT_QUEUE_TTL',
    'capacity': 'PLAYIT_CAPACITY',
    'poll_interval': 'PLAYIT_POLL_INTERVAL',
    'spotify_client_id': 'SPOTIFY_CLIENT_ID',
    'spotify_client_secret': 'SPOTIFY_CLIENT_SECRET',
    'port': 'PORT',
}

# Only these may be overridden from the settings table; secrets stay in the environment
_DB_KEYS = ('capacity', 'poll_interval', 'queue_ttl')


def _raw_value(key: str, db=None) -> Optional[str]:
    if db is not None and key in _DB_KEYS:
        stored = db.get_setting(key)
        if stored:
            return stored
    return os.environ.get(_ENV[key]) or None


def load_config(db=None) -> Dict:
    cfg = dict(DEFAULTS)
    for key in DEFAULTS:
        raw = _raw_value(key, db)
        if raw is not None:
            cfg[key] = raw

    cfg['store'] = str(cfg['store']).lower()
    if cfg['store'] not in VALID_STORES:
        raise ValueError(f"store must be one of {sorted(VALID_STORES)}")
    cfg['capacity'] = int(cfg['capacity'])
    if cfg['capacity'] < 1:
        raise ValueError("capacity must be positive")
    cfg['poll_interval'] = float(cfg['poll_interval'])
    if cfg['poll_interval'] <= 0:
        raise ValueError("poll_interval must be positive")
    cfg['queue_ttl'] = int(cfg['queue_ttl']) if cfg['queue_ttl'] not in (None, '') else None
    if cfg['queue_ttl'] is not None and cfg['queue_ttl'] < 1:
        raise ValueError("queue_ttl must be a positive number of seconds")
    cfg['port'] = int(cfg['port'])
    return cfg


def save_config(db, cfg: Dict):
    if 'capacity' in cfg:
        db.set_setting('capacity', str(int(cfg['capacity'])))
    if 'poll_interval' in cfg:
        db.set_setting('poll_interval', str(float(cfg['poll_interval'])))
    if 'queue_ttl' in cfg:
        ttl = cfg.get('queue_ttl')
        db.set_setting('queue_ttl', str(int(ttl)) if ttl else '')
