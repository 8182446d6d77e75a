import threading
import unittest
from unittest.mock import Mock

import timeout_decorator
from hamcrest import assert_that, is_, empty

from onionctl.support.events import EventSource


class EventsTest(unittest.TestCase):

    def test_handlers_empty(self):
        sut = EventSource()
        assert_that(sut.handlers(), is_(empty()))

    def test_no_listeners(self):
        assert_that(EventSource().fire(1), is_(0))

    def test_manage_handlers(self):
        sut = EventSource()
        m1 = Mock()
        sut.add(m1)
        assert_that(sut.handlers(), is_((m1,)))

        sut.remove(m1)
        assert_that(sut.handlers(), is_(()))

        sut.remove(m1)
        assert_that(sut.handlers(), is_(()))

        sut += m1
        assert_that(sut.handlers(), is_((m1,)))

        sut -= m1
        assert_that(sut.handlers(), is_(()))

    def test_listeners(self):
        sut = EventSource()
        l1 = Mock()
        l2 = Mock()
        sut += l1
        sut += l2
        assert_that(sut.fire(1, v="hey"), is_(2))
        l1.assert_called_once_with(1, v="hey")
        l2.assert_called_once_with(1, v="hey")

    def test_failing_handler_does_not_stop_delivery(self):
        log = Mock()
        sut = EventSource(log=log)
        later = Mock()
        sut += Mock(side_effect=RuntimeError("boom"))
        sut += later
        assert_that(sut.fire('x'), is_(1))
        later.assert_called_once_with('x')
        assert_that(log.exception.call_count, is_(1))

    def test_handler_can_remove_itself_while_firing(self):
        sut = EventSource()
        later = Mock()

        def once(event):
            sut.remove(once)

        sut += once
        sut += later
        sut.fire('x')
        later.assert_called_once_with('x')
        assert_that(sut.handlers(), is_((later,)))

    @timeout_decorator.timeout(5)
    def test_fire_from_another_thread(self):
        sut = EventSource()
        received = []
        sut += received.append
        t = threading.Thread(target=sut.fire, args=('changed',))
        t.start()
        t.join()
        assert_that(received, is_(['changed']))
