import sqlite3
from pathlib import Path

import pytest

from playit.storage import DB, MemoryStore, RedisStore, SQLiteStore, StoreUnavailable, empty_state, open_store


def _bump_mutator(state):
    state['tracks'].append({'id': str(len(state['tracks']))})
    state['last_updated'] += 1
    return state, len(state['tracks'])


def test_settings_roundtrip(tmp_path: Path):
    db = DB(tmp_path / 'test.db')
    db.set_setting('foo', 'bar')
    assert db.get_setting('foo') == 'bar'
    assert db.get_setting('missing') is None


def test_memory_store_starts_empty_and_reads_are_copies():
    store = MemoryStore()
    assert store.read() == empty_state()
    snapshot = store.read()
    snapshot['tracks'].append({'id': 'x'})
    assert store.read()['tracks'] == []


def test_memory_store_update_and_skip():
    store = MemoryStore()
    assert store.update(_bump_mutator) == 1
    assert store.read()['last_updated'] == 1
    # None means no write
    assert store.update(lambda s: (None, 'nothing')) == 'nothing'
    assert store.read()['last_updated'] == 1


def test_memory_store_write_replaces_state():
    store = MemoryStore()
    store.write({'tracks': [{'id': 'a'}], 'last_updated': 5})
    assert store.read() == {'tracks': [{'id': 'a'}], 'last_updated': 5}


def test_sqlite_store_persists_across_instances(tmp_path: Path):
    path = tmp_path / 'queue.db'
    first = SQLiteStore(DB(path))
    assert first.read() == empty_state()
    first.update(_bump_mutator)
    second = SQLiteStore(DB(path))
    assert second.read() == {'tracks': [{'id': '0'}], 'last_updated': 1}


def test_sqlite_store_rolls_back_when_mutator_raises(tmp_path: Path):
    store = SQLiteStore(DB(tmp_path / 'queue.db'))
    store.update(_bump_mutator)

    def boom(state):
        state['tracks'] = []
        raise KeyError('boom')

    with pytest.raises(KeyError):
        store.update(boom)
    assert len(store.read()['tracks']) == 1


def test_sqlite_store_surfaces_backend_failure(tmp_path: Path, monkeypatch):
    store = SQLiteStore(DB(tmp_path / 'queue.db'))

    def broken(*args, **kwargs):
        raise sqlite3.OperationalError('disk I/O error')

    monkeypatch.setattr(store.db, 'get_kv', broken)
    with pytest.raises(StoreUnavailable):
        store.read()
    with pytest.raises(StoreUnavailable):
        store.update(_bump_mutator)


def test_open_store_selects_backend(tmp_path: Path):
    assert isinstance(open_store({'store': 'memory'}), MemoryStore)
    sq = open_store({'store': 'sqlite', 'db_path': str(tmp_path / 'q.db')})
    assert isinstance(sq, SQLiteStore)
    assert sq.ping() is True
    with pytest.raises(ValueError):
        open_store({'store': 'cassette'})


def test_redis_store_update_and_ttl():
    fakeredis = pytest.importorskip('fakeredis')
    client = fakeredis.FakeRedis(decode_responses=True)
    store = RedisStore(client, key='test:queue', ttl=60)
    assert store.read() == empty_state()
    assert store.update(_bump_mutator) == 1
    assert store.read()['tracks'] == [{'id': '0'}]
    assert 0 < client.ttl('test:queue') <= 60
    assert store.ping() is True


def test_redis_store_retries_on_conflict():
    fakeredis = pytest.importorskip('fakeredis')
    client = fakeredis.FakeRedis(decode_responses=True)
    other = RedisStore(client, key='test:queue')
    store = RedisStore(client, key='test:queue')
    calls = {'n': 0}

    def racing(state):
        calls['n'] += 1
        if calls['n'] == 1:
            # another writer commits between WATCH and EXEC
            other.write({'tracks': [{'id': 'other'}], 'last_updated': 10})
        state['tracks'].append({'id': 'mine'})
        state['last_updated'] += 1
        return state, calls['n']

    assert store.update(racing) == 2
    assert [t['id'] for t in store.read()['tracks']] == ['other', 'mine']


def test_redis_store_surfaces_backend_failure():
    fakeredis = pytest.importorskip('fakeredis')
    server = fakeredis.FakeServer()
    server.connected = False
    store = RedisStore(fakeredis.FakeRedis(server=server, decode_responses=True))
    with pytest.raises(StoreUnavailable):
        store.read()
    with pytest.raises(StoreUnavailable):
        store.update(_bump_mutator)
    assert store.ping() is False
