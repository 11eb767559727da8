import threading
from pathlib import Path

import pytest

from playit.queue import VotingQueue
from playit.storage import DB, MemoryStore, RedisStore, SQLiteStore


def _run(n, target):
    errors = []

    def wrapped(i):
        try:
            target(i)
        except Exception as e:
            errors.append(e)

    ts = [threading.Thread(target=wrapped, args=(i,)) for i in range(n)]
    for t in ts: t.start()
    for t in ts: t.join()
    return errors


@pytest.fixture(params=['memory', 'sqlite', 'redis'])
def make_queue(request, tmp_path: Path):
    if request.param == 'redis':
        fakeredis = pytest.importorskip('fakeredis')
        server = fakeredis.FakeServer()

    def factory(capacity=30):
        if request.param == 'memory':
            store = MemoryStore()
        elif request.param == 'sqlite':
            store = SQLiteStore(DB(tmp_path / 'queue.db'))
        else:
            # contended WATCH retries are expected with many threads on one key
            client = fakeredis.FakeRedis(server=server, decode_responses=True)
            store = RedisStore(client, key='test:queue', max_attempts=1000)
        return VotingQueue(store, capacity=capacity)
    return factory


def test_concurrent_adds_are_not_lost(make_queue):
    q = make_queue(capacity=100)
    errors = _run(20, lambda i: q.add_track({'spotify_id': f't{i}', 'name': f'T{i}'}))
    assert not errors
    assert sorted(t['spotify_id'] for t in q.get_queue()['tracks']) == sorted(f't{i}' for i in range(20))


def test_capacity_never_overshoots(make_queue):
    q = make_queue(capacity=5)
    results = []
    lock = threading.Lock()

    def add(i):
        created, reason = q.add_track({'spotify_id': f't{i}'})
        with lock:
            results.append(created is not None)

    errors = _run(20, add)
    assert not errors
    assert results.count(True) == 5
    assert len(q.get_queue()['tracks']) == 5


def test_concurrent_duplicate_adds_admit_once(make_queue):
    q = make_queue()
    errors = _run(10, lambda i: q.add_track({'spotify_id': 'same'}))
    assert not errors
    assert len(q.get_queue()['tracks']) == 1


def test_concurrent_upvotes_all_count(make_queue):
    q = make_queue()
    q.add_track({'spotify_id': 'a'})
    errors = _run(25, lambda i: q.upvote_track('a'))
    assert not errors
    assert q.get_queue()['tracks'][0]['votes'] == 25


def test_sqlite_store_shared_between_handles(tmp_path: Path):
    # two handles on one file behave like two service instances
    path = tmp_path / 'shared.db'
    q1 = VotingQueue(SQLiteStore(DB(path)), capacity=50)
    q2 = VotingQueue(SQLiteStore(DB(path)), capacity=50)
    errors = _run(10, lambda i: (q1 if i % 2 else q2).add_track({'spotify_id': f't{i}'}))
    assert not errors
    assert len(q1.get_queue()['tracks']) == 10
    assert q1.get_queue() == q2.get_queue()


def test_redis_store_shared_between_instances():
    fakeredis = pytest.importorskip('fakeredis')
    server = fakeredis.FakeServer()

    def instance():
        client = fakeredis.FakeRedis(server=server, decode_responses=True)
        return VotingQueue(RedisStore(client, key='shared:queue', max_attempts=1000), capacity=8)

    q1, q2 = instance(), instance()
    errors = _run(16, lambda i: (q1 if i % 2 else q2).add_track({'spotify_id': f't{i}'}))
    assert not errors
    assert len(q1.get_queue()['tracks']) == 8
    assert q1.get_queue() == q2.get_queue()
