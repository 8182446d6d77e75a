"""
A background thread that repeatedly runs one step until it is stopped. The dispatch queue
pumps itself with one and the reachability monitor polls with another.
"""
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class AsyncLoop:
    """
    Repeatedly calls loop() on a daemon thread until stop() is called.
    An exception raised by a step is logged and the loop carries on.

    :param fn: the step, when loop() is not overridden
    :param name: the thread name, which shows up in log records
    """

    def __init__(self, fn: Callable=None, args=(), name=None, log=logger):
        self.fn = fn
        self.args = args
        self.name = name or type(self).__name__
        self.stop_event = threading.Event()
        self.background_thread = None
        self.logger = log
        self._lock = threading.Lock()

    def start(self):
        """ starts the thread, unless it is already running. """
        with self._lock:
            if self.background_thread is not None:
                return
            self.stop_event.clear()
            self.background_thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self.background_thread.start()

    def _run(self):
        self.logger.debug("%s started" % self.name)
        while self.running():
            try:
                self.loop()
            except Exception as e:
                self.logger.exception("%s: %s" % (self.name, e))
        self.logger.debug("%s exiting" % self.name)

    def loop(self):
        """ one step. A step that waits should use wait() so that stop() is not held up. """
        self.fn(*self.args)

    def running(self):
        return not self.stop_event.is_set()

    def wait(self, seconds):
        """
        sleeps for up to the given time, returning early when stopped.
        :return: True if the loop has been stopped
        """
        return self.stop_event.wait(seconds)

    def stop(self, timeout=None):
        """ signals the thread to stop and waits for it to exit, unless called from the thread itself. """
        self.stop_event.set()
        with self._lock:
            thread, self.background_thread = self.background_thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
