import os
import time
import inspect
import socket
import logging
import contextlib
from datetime import timedelta
from multiprocessing.dummy import Pool as ThreadPool

import psutil

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def Timer(msg=None, logger=None):
    if msg:
        logger = logger or logging.getLogger(__name__)
        logger.info(msg + '...')
    result = _TimerResult()
    start = time.time()
    yield result
    result.seconds = time.time() - start
    result.timedelta = timedelta(seconds=result.seconds)
    if msg:
        logger.info(msg + f' took {result.timedelta}')

class _TimerResult(object):
    seconds = -1.0


class MemoryWatcher(object):
    def __init__(self, threshold_mb=1.0):
        self.hostname = socket.gethostname().split('.')[0]
        self.current_process = psutil.Process()
        self.initial_memory_usage = -1
        self.threshold_mb = threshold_mb
        self.ignore_threshold = False

    def __enter__(self):
        self.initial_memory_usage = self.current_process.memory_info().rss
        return self

    def __exit__(self, *args):
        pass

    def memory_increase(self):
        return self.current_process.memory_info().rss - self.initial_memory_usage

    def memory_increase_mb(self):
        return self.memory_increase() / 1024.0 / 1024.0

    def log_increase(self, logger, level=logging.DEBUG, note=""):
        if logger.isEnabledFor(level):
            caller_line = inspect.currentframe().f_back.f_lineno
            caller_file = os.path.basename( inspect.currentframe().f_back.f_code.co_filename )
            increase_mb = self.memory_increase_mb()

            if increase_mb > self.threshold_mb or self.ignore_threshold:
                # As soon as any message exceeds the threshold, show all messages from then on.
                self.ignore_threshold = True
                logger.log(level, "Memory increase: {:.1f} MB [{}] [{}:{}] ({})"
                                  .format(increase_mb, self.hostname, caller_file, caller_line, note) )


def run_in_parallel(*funcs):
    """
    Call each of the given zero-argument functions on its own thread,
    wait for all of them to finish, and return their results in order.

    If any call raises, the exception is re-raised here (after all calls have
    been joined), so a failure in one task is never silently dropped.
    """
    pool = ThreadPool(len(funcs))
    try:
        pending = [pool.apply_async(f) for f in funcs]

        # close the pool to further requests
        pool.close()

        # wait for any remaining threads
        pool.join()
        return [p.get() for p in pending]
    finally:
        pool.terminate()


def relpath_to_abspath(path, config_dir):
    """
    Convert a config-relative path to an absolute path.
    Empty paths are returned unchanged.
    """
    if not path or path.startswith('/'):
        return path
    return os.path.normpath( os.path.join(config_dir, path) )
