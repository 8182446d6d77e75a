"""
A ControlChannel over stem's Controller.

stem calls are synchronous, so completions are invoked before each method returns.
Events arrive on stem's event thread and are handed to the observers there.
"""
import binascii
import itertools
import logging
import threading

import stem
from stem import CircStatus, Signal
from stem.control import Controller, EventType

from onionctl.control.channel import ChannelConnectError, ChannelError, Circuit, ControlChannel

logger = logging.getLogger(__name__)

CIRCUIT_ESTABLISHED = 'CIRCUIT_ESTABLISHED'
CIRCUIT_NOT_ESTABLISHED = 'CIRCUIT_NOT_ESTABLISHED'


def _unquote(value):
    """ stem quotes configuration values itself. """
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _complete(completion, *result):
    if completion is not None:
        completion(*result)


class StemControlChannel(ControlChannel):
    """
    :param host: the control port address
    :param port: the control port
    """

    def __init__(self, host='127.0.0.1', port=39060, log=logger):
        self.host = host
        self.port = port
        self.logger = log
        self._controller = None
        self._listening = False
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._status_observers = {}
        self._circuit_observers = {}

    @property
    def controller(self) -> Controller:
        controller = self._controller
        if controller is None:
            raise ChannelError("not connected to %s:%s" % (self.host, self.port))
        return controller

    @property
    def is_connected(self):
        return self._controller is not None and self._controller.is_alive()

    def connect(self):
        try:
            self._controller = Controller.from_port(address=self.host, port=self.port)
        except stem.SocketError as e:
            raise ChannelConnectError("unable to connect to %s:%s: %s" % (self.host, self.port, e)) from e
        self._listening = False

    def authenticate(self, cookie: bytes, completion):
        controller = self.controller
        try:
            response = controller.msg('AUTHENTICATE %s' % binascii.hexlify(cookie).decode('ascii'))
        except stem.ControllerError as e:
            _complete(completion, False, str(e))
            return
        if not response.is_ok():
            _complete(completion, False, str(response))
            return
        # what stem.connection.authenticate() does once the agent accepts
        controller._post_authentication()
        if not self._listening:
            controller.add_event_listener(self._handle_event, EventType.STATUS_CLIENT, EventType.CIRC)
            self._listening = True
        _complete(completion, True, None)

    def _call(self, completion, fn, *args):
        try:
            fn(*args)
        except stem.ControllerError as e:
            self.logger.warning("%s failed: %s" % (getattr(fn, '__name__', fn), e))
            _complete(completion, False, str(e))
            return
        _complete(completion, True, None)

    def set_conf_for_key(self, key, value, completion=None):
        self._call(completion, self.controller.set_conf, key, _unquote(value))

    def set_confs(self, confs, completion=None):
        params = [(kv.key, _unquote(kv.value)) for kv in confs]
        self._call(completion, self.controller.set_options, params)

    def reset_conf(self, key, completion=None):
        self._call(completion, self.controller.reset_conf, key)

    def _add_observer(self, observers, observer):
        with self._lock:
            token = next(self._tokens)
            observers[token] = observer
        return token

    def add_status_observer(self, observer):
        return self._add_observer(self._status_observers, observer)

    def add_circuit_established_observer(self, observer):
        return self._add_observer(self._circuit_observers, observer)

    def remove_observer(self, token):
        with self._lock:
            self._status_observers.pop(token, None)
            self._circuit_observers.pop(token, None)

    def _handle_event(self, event):
        """ runs on stem's event thread. """
        with self._lock:
            status_observers = tuple(self._status_observers.values())
            circuit_observers = tuple(self._circuit_observers.values())

        if event.type == EventType.CIRC:
            if event.status == CircStatus.BUILT:
                established = True
            else:
                return
        else:
            for observer in status_observers:
                observer('STATUS_' + event.status_type, event.runlevel, event.action, event.keyword_args)
            if event.action == CIRCUIT_ESTABLISHED:
                established = True
            elif event.action == CIRCUIT_NOT_ESTABLISHED:
                established = False
            else:
                return

        for observer in circuit_observers:
            observer(established)

    def get_circuits(self, completion):
        try:
            circuits = [Circuit(c.id, c.status, ['$' + fingerprint for fingerprint, _ in c.path])
                        for c in self.controller.get_circuits()]
        except stem.ControllerError as e:
            self.logger.warning("unable to list circuits: %s" % e)
            circuits = []
        completion(circuits)

    def close_circuits(self, circuits, completion):
        controller = self.controller
        success = True
        for circuit in circuits:
            try:
                controller.close_circuit(circuit.circuit_id)
            except stem.ControllerError as e:
                self.logger.warning("unable to close circuit %s: %s" % (circuit.circuit_id, e))
                success = False
        completion(success)

    def reset_connection(self, completion=None):
        self._call(completion, self.controller.signal, Signal.RELOAD)

    def disconnect(self):
        controller = self._controller
        self._controller = None
        self._listening = False
        if controller is None:
            return
        try:
            controller.signal(Signal.SHUTDOWN)
        except stem.ControllerError as e:
            self.logger.warning("unable to signal shutdown: %s" % e)
        finally:
            controller.close()
