"""
A small publish/subscribe bus. The reachability monitor publishes on it from its polling thread
while subscribers may come and go on others, so the handler list is guarded by a lock.
Handlers run on the publishing thread.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class EventSource(object):
    """
    Calls each subscribed handler with the arguments given to fire().
    A handler that raises is logged and does not stop delivery to the others.
    """

    def __init__(self, log=logger):
        self._handlers = []
        self._lock = threading.Lock()
        self.logger = log

    def __iadd__(self, handler):
        return self.add(handler)

    def __isub__(self, handler):
        return self.remove(handler)

    def add(self, handler):
        with self._lock:
            self._handlers.append(handler)
        return self

    def remove(self, handler):
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)
        return self

    def handlers(self):
        with self._lock:
            return tuple(self._handlers)

    def fire(self, *args, **kwargs):
        """
        :return: the number of handlers that completed without raising
        """
        delivered = 0
        for handler in self.handlers():
            try:
                handler(*args, **kwargs)
                delivered += 1
            except Exception as e:
                self.logger.exception("event handler %r failed: %s" % (handler, e))
        return delivered
