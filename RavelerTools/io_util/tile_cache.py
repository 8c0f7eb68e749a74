import threading
from collections import OrderedDict

import logging
logger = logging.getLogger(__name__)


class TileCache(object):
    """
    Capacity-bounded cache of decoded tiles, keyed by filename.
    When the cache is full, storing a new item evicts the least-recently-accessed one.

    This is purely a performance optimization: callers must produce
    identical results with or without a cache.

    All bookkeeping happens under a lock, so a single cache may be
    shared by several stacks or threads.
    """
    def __init__(self, max_items):
        if max_items < 1:
            raise ValueError(f"TileCache needs room for at least one item, not {max_items}")
        self.max_items = max_items
        self._data = OrderedDict()
        self._lock = threading.Lock()

    def store(self, key, data):
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            elif len(self._data) >= self.max_items:
                evicted_key, _ = self._data.popitem(last=False)
                logger.debug(f"Evicting {evicted_key} from tile cache")
            self._data[key] = data

    def retrieve(self, key):
        """
        Returns:
            (data, found)
        """
        with self._lock:
            try:
                data = self._data[key]
            except KeyError:
                return None, False
            self._data.move_to_end(key)
            return data, True

    def clear(self):
        with self._lock:
            self._data.clear()

    def __contains__(self, key):
        with self._lock:
            return key in self._data

    def __len__(self):
        with self._lock:
            return len(self._data)
