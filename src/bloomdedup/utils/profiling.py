"""cProfile support.

Setting BLOOMDEDUP_PROFILE to a directory makes the CLI entry point and every pool
worker call dump profiling data below ``<dir>/<timestamp_ms>_<main_pid>/``. The
session directory name is handed to worker processes through an environment
variable, so one run ends up in one directory.
"""
import cProfile
import functools
import itertools
import os
import time
from pathlib import Path
from typing import Callable, TypeVar, ParamSpec

P = ParamSpec('P')
T = TypeVar('T')

PROFILE_ENV = 'BLOOMDEDUP_PROFILE'
_SESSION_ENV = '_BLOOMDEDUP_PROFILE_SESSION'

_sequence = itertools.count()


def session_directory() -> Path | None:
    """Get the directory profiles of this run are written to.

    Returns:
        None when BLOOMDEDUP_PROFILE is unset. Otherwise
        ``<BLOOMDEDUP_PROFILE>/<timestamp_ms>_<main_pid>``, where the session part
        comes from the environment when the entry point already pinned it, so
        worker processes write next to the main process.
    """
    base = os.environ.get(PROFILE_ENV)
    if not base:
        return None
    session = os.environ.get(_SESSION_ENV) or f"{int(time.time() * 1000)}_{os.getpid()}"
    return Path(base) / session


def profiled(prefix: str) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory that profiles each call of the wrapped function.

    When profiling is disabled the function is called directly. Otherwise every
    call is written to ``<session>/<prefix>_<pid>_<seq>.prof``, also when it raises.

    Args:
        prefix: Leading part of the profile file names, e.g. "main" or "worker"

    Returns:
        A decorator preserving the signature of the wrapped function
    """
    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            directory = session_directory()
            if directory is None:
                return func(*args, **kwargs)

            directory.mkdir(parents=True, exist_ok=True)
            profiler = cProfile.Profile()
            try:
                profiler.enable()
                return func(*args, **kwargs)
            finally:
                profiler.disable()
                profiler.dump_stats(str(directory / f"{prefix}_{os.getpid()}_{next(_sequence)}.prof"))

        return wrapper

    return decorator


def profile_main(func: Callable[P, T]) -> Callable[P, T]:
    """Profile the entry point and pin the session directory for worker processes.

    The session name is stored in the environment before the pool is created, so
    workers forked or spawned afterwards inherit it.
    """
    profiled_func = profiled("main")(func)

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        if os.environ.get(PROFILE_ENV) and not os.environ.get(_SESSION_ENV):
            os.environ[_SESSION_ENV] = f"{int(time.time() * 1000)}_{os.getpid()}"
        return profiled_func(*args, **kwargs)

    return wrapper


profile_worker = profiled("worker")
