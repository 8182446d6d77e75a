"""
A serial dispatch queue. Work items are run one at a time in deadline order,
either by a background thread (start()/stop()) or synchronously by calling run_pending().

All state owned by a ConnectionOrchestrator is touched only from work items on its queue,
so callbacks arriving on other threads (timers, channel events, reachability) post their
work here rather than acting directly.
"""
import heapq
import itertools
import logging
import threading
import time

from onionctl.support.loop import AsyncLoop

logger = logging.getLogger(__name__)


class DelayedWork:
    """ A single scheduled call. Cancelling it before it runs means it never runs. """

    def __init__(self, deadline, sequence, fn, args=()):
        self.deadline = deadline
        self.sequence = sequence
        self.fn = fn
        self.args = args
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self):
        return self._cancelled

    def __lt__(self, other):
        return (self.deadline, self.sequence) < (other.deadline, other.sequence)

    def __call__(self):
        return self.fn(*self.args)

    def __repr__(self):
        return "DelayedWork(%s, deadline=%s%s)" % (getattr(self.fn, '__name__', self.fn), self.deadline,
                                                   ", cancelled" if self._cancelled else "")


class DispatchQueue:
    """
    Runs submitted callables serially, ordered by deadline and then by submission order.

    :param clock: a callable returning the current time in seconds. Tests inject a fake clock
        and drive the queue with run_pending().
    :param idle_wait: the longest the background thread sleeps before re-checking for work.
    """

    def __init__(self, clock=time.monotonic, idle_wait=0.5, log=logger):
        self.clock = clock
        self.idle_wait = idle_wait
        self.logger = log
        self._condition = threading.Condition()
        self._work = []
        self._sequence = itertools.count()
        self._loop = AsyncLoop(self._pump, name='dispatch', log=log)

    def submit(self, fn, *args) -> DelayedWork:
        """ schedules fn(*args) to run as soon as possible, after any work already due. """
        return self.submit_after(0, fn, *args)

    def submit_after(self, delay, fn, *args) -> DelayedWork:
        """
        schedules fn(*args) to run no sooner than delay seconds from now.
        :return: the DelayedWork, which can be cancelled.
        """
        with self._condition:
            work = DelayedWork(self.clock() + delay, next(self._sequence), fn, args)
            heapq.heappush(self._work, work)
            self._condition.notify()
        return work

    @property
    def pending(self):
        """ the number of scheduled items that have not been cancelled or run. """
        with self._condition:
            return sum(1 for w in self._work if not w.cancelled)

    def run_pending(self):
        """
        Runs every item whose deadline has passed, including items scheduled by those items
        that are themselves already due.
        :return: the number of items run
        """
        count = 0
        while True:
            work = self._next_due(self.clock())
            if work is None:
                return count
            self._run(work)
            count += 1

    def _next_due(self, now):
        with self._condition:
            self._discard_cancelled()
            if self._work and self._work[0].deadline <= now:
                return heapq.heappop(self._work)
        return None

    def _discard_cancelled(self):
        while self._work and self._work[0].cancelled:
            heapq.heappop(self._work)

    def _run(self, work):
        try:
            work()
        except Exception as e:
            self.logger.exception("unexpected exception '%s' running %r" % (e, work))

    def _time_to_next(self):
        self._discard_cancelled()
        return self._work[0].deadline - self.clock() if self._work else None

    def _pump(self):
        """ one iteration of the background thread: sleep until work is due, then run it. """
        with self._condition:
            wait = self._time_to_next()
            if wait is None or wait > 0:
                self._condition.wait(self.idle_wait if wait is None else min(wait, self.idle_wait))
        if self._loop.running():
            self.run_pending()

    def start(self):
        self._loop.start()

    def stop(self):
        self._loop.stop_event.set()
        with self._condition:
            self._condition.notify_all()
        self._loop.stop()
