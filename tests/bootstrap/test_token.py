import threading

import pytest

from clusterstrap.bootstrap.token import TokenStore
from clusterstrap.errors import TokenAlreadySet, TokenUnavailable


def test_token_is_write_once():
    store = TokenStore()
    store.set("  K10abc::server:xyz\n")
    assert store.get() == "K10abc::server:xyz"
    with pytest.raises(TokenAlreadySet):
        store.set("other")
    assert store.get() == "K10abc::server:xyz"


def test_empty_token_rejected():
    store = TokenStore()
    with pytest.raises(ValueError):
        store.set(" \n")
    assert not store.is_set


def test_get_times_out_before_set():
    with pytest.raises(TokenUnavailable):
        TokenStore().get(timeout=0.01)


def test_readers_block_until_token_exists():
    store = TokenStore()
    seen = []
    started = threading.Barrier(6)

    def reader():
        started.wait()
        seen.append(store.get(timeout=5))

    threads = [threading.Thread(target=reader) for _ in range(5)]
    for t in threads:
        t.start()
    started.wait()
    store.set("tok")
    for t in threads:
        t.join(timeout=5)

    assert seen == ["tok"] * 5


def test_concurrent_writers_only_one_wins():
    store = TokenStore()
    errors = []
    go = threading.Event()

    def writer(i):
        go.wait()
        try:
            store.set(f"tok-{i}")
        except TokenAlreadySet:
            errors.append(i)

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    go.set()
    for t in threads:
        t.join(timeout=5)

    assert len(errors) == 7
    assert store.get().startswith("tok-")
