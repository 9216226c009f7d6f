import threading

import pytest

from layeredconf.queue import ConcurrentError, concurrent


def _failing_on(errors):
    def work(i):
        if errors[i] is not None:
            raise errors[i]

    return work


def test_no_error():
    errors = [None]
    assert concurrent(len(errors), len(errors), _failing_on(errors)) is None


def test_error_is_reported():
    errors = [None, RuntimeError("error string")]
    with pytest.raises(ConcurrentError) as info:
        concurrent(len(errors), len(errors), _failing_on(errors))
    assert "error string" in str(info.value)
    assert len(info.value.errors) == 1


def test_every_piece_runs_once():
    seen = []
    lock = threading.Lock()

    def work(i):
        with lock:
            seen.append(i)

    result = concurrent(3, 10, work)
    assert result is None
    assert sorted(seen) == list(range(10))


def test_all_errors_collected():
    def work(i):
        raise ValueError(f"piece {i}")

    with pytest.raises(ConcurrentError) as info:
        concurrent(2, 4, work)
    assert sorted(str(e) for e in info.value.errors) == [f"piece {i}" for i in range(4)]