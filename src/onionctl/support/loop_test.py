import threading
import unittest
from unittest.mock import Mock

import timeout_decorator
from hamcrest import assert_that, is_, greater_than_or_equal_to

from onionctl.support.loop import AsyncLoop


class AsyncLoopTest(unittest.TestCase):

    @timeout_decorator.timeout(5)
    def test_runs_until_stopped(self):
        calls = threading.Semaphore(0)
        sut = AsyncLoop(calls.release, name='test-loop')
        sut.start()
        try:
            assert_that(calls.acquire(timeout=2), is_(True))
            assert_that(sut.background_thread.name, is_('test-loop'))
        finally:
            sut.stop()
        assert_that(sut.background_thread, is_(None))
        assert_that(sut.running(), is_(False))

    @timeout_decorator.timeout(5)
    def test_exception_is_logged_and_loop_continues(self):
        log = Mock()
        second = threading.Event()
        attempts = []

        def step():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("first step fails")
            second.set()

        sut = AsyncLoop(step, log=log)
        sut.start()
        try:
            assert_that(second.wait(2), is_(True))
        finally:
            sut.stop()
        assert_that(log.exception.call_count, is_(1))
        assert_that(len(attempts), is_(greater_than_or_equal_to(2)))

    @timeout_decorator.timeout(5)
    def test_start_twice_starts_one_thread(self):
        sut = AsyncLoop(lambda: sut.wait(0.01))
        sut.start()
        thread = sut.background_thread
        sut.start()
        try:
            assert_that(sut.background_thread is thread, is_(True))
        finally:
            sut.stop()

    @timeout_decorator.timeout(5)
    def test_restart_after_stop(self):
        ran = threading.Event()
        sut = AsyncLoop(lambda: (ran.set(), sut.wait(0.01)))
        sut.start()
        sut.stop()
        ran.clear()
        sut.start()
        try:
            assert_that(ran.wait(2), is_(True))
        finally:
            sut.stop()

    def test_wait_returns_early_when_stopped(self):
        sut = AsyncLoop()
        sut.stop()
        assert_that(sut.wait(10), is_(True))

    def test_default_name(self):
        assert_that(AsyncLoop().name, is_('AsyncLoop'))
