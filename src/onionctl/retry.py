import logging

from onionctl.support.dispatch import DispatchQueue

logger = logging.getLogger(__name__)


class RetryScheduler:
    """
    Holds at most one delayed action on a dispatch queue.

    Arming the scheduler replaces any previously armed action, so retries never pile up.
    Once the action has run, or been cancelled, the scheduler is disarmed.

    :param queue: the queue the action is run on.
    """

    def __init__(self, queue: DispatchQueue, log=logger):
        self.queue = queue
        self.logger = log
        self._handle = None

    @property
    def armed(self):
        return self._handle is not None

    def arm(self, delay, action):
        """
        Cancels any armed action and schedules action to run after delay seconds.
        :param delay: the delay in seconds
        :param action: a callable taking no arguments
        """
        self.cancel()
        handle = None

        def fire():
            if self._handle is handle:
                self._handle = None
                action()

        handle = self._handle = self.queue.submit_after(delay, fire)
        self.logger.debug("retry armed for %ss" % delay)
        return handle

    def cancel(self):
        """ cancels the armed action, if any. Calling this when disarmed does nothing. """
        handle = self._handle
        self._handle = None
        if handle is not None:
            handle.cancel()
            self.logger.debug("retry cancelled")
