"""Run independent pieces of work on a bounded pool of threads."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable


class ConcurrentError(Exception):
    """One or more pieces of work failed; ``errors`` holds their exceptions."""

    def __init__(self, errors: list[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__("".join(f"\t{err}\n" for err in self.errors))


def concurrent(workers: int, pieces: int, do_work_piece: Callable[[int], None]) -> None:
    """Call ``do_work_piece(i)`` for every ``i`` below ``pieces`` on up to ``workers`` threads.

    Exceptions raised by the pieces are collected and raised together as a
    ConcurrentError once every piece has run.
    """
    workers = min(workers, pieces)
    if workers <= 0:
        return

    def run(piece: int) -> BaseException | None:
        try:
            do_work_piece(piece)
        except Exception as exc:  # collected and reported together
            return exc
        return None

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(run, range(pieces)))

    errors = [err for err in outcomes if err is not None]
    if errors:
        raise ConcurrentError(errors)