"""
The boundary to the network agent's control port.

The wire protocol is provided by an implementation of ControlChannel. Implementations
may invoke completions and observers on any thread; callers are expected to hand the
work back to their own context.
"""
from abc import ABCMeta, abstractmethod
from collections import namedtuple

from onionctl.support.mixins import CommonEqualityMixin, StringerMixin

KeyValue = namedtuple('KeyValue', 'key value')

# status event fields used to recognise bootstrap progress
STATUS_CLIENT = 'STATUS_CLIENT'
BOOTSTRAP = 'BOOTSTRAP'
PROGRESS = 'PROGRESS'


class ChannelError(Exception):
    """ Indicates an error condition with the control channel. """


class ChannelConnectError(ChannelError):
    """ The control port could not be reached. """


class AuthenticationError(ChannelError):
    """ The agent rejected the authentication cookie. """


class ReconfigurationError(ChannelError):
    """ The agent did not accept a configuration change. """


class Circuit(CommonEqualityMixin, StringerMixin):
    """ A circuit built by the agent. Owned by the channel; the orchestrator only passes these through. """

    def __init__(self, circuit_id, status=None, path=()):
        self.circuit_id = circuit_id
        self.status = status
        self.path = tuple(path)


class ControlChannel(metaclass=ABCMeta):
    """ An authenticated session to the agent's control port. """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def connect(self):
        """
        Opens the control port.
        Raises ChannelConnectError if it cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    def authenticate(self, cookie: bytes, completion):
        """
        :param cookie: the raw bytes of the agent's authentication cookie
        :param completion: called with (success, error)
        """
        raise NotImplementedError

    @abstractmethod
    def set_conf_for_key(self, key, value, completion=None):
        raise NotImplementedError

    @abstractmethod
    def set_confs(self, confs, completion=None):
        """
        :param confs: a sequence of KeyValue, applied in order
        :param completion: called with (success, error)
        """
        raise NotImplementedError

    @abstractmethod
    def reset_conf(self, key, completion=None):
        raise NotImplementedError

    @abstractmethod
    def add_status_observer(self, observer):
        """
        :param observer: called with (type, severity, action, arguments) for each status event.
            Returns True when it handled the event.
        :return: a token for remove_observer()
        """
        raise NotImplementedError

    @abstractmethod
    def add_circuit_established_observer(self, observer):
        """
        :param observer: called with a bool each time the agent reports whether it has a circuit.
        :return: a token for remove_observer()
        """
        raise NotImplementedError

    @abstractmethod
    def remove_observer(self, token):
        raise NotImplementedError

    @abstractmethod
    def get_circuits(self, completion):
        """ :param completion: called with a list of Circuit """
        raise NotImplementedError

    @abstractmethod
    def close_circuits(self, circuits, completion):
        """ :param completion: called with a bool """
        raise NotImplementedError

    @abstractmethod
    def reset_connection(self, completion=None):
        """ :param completion: called with (success, error) """
        raise NotImplementedError

    @abstractmethod
    def disconnect(self):
        """ Signals the agent to shut down and closes the session. """
        raise NotImplementedError


def bootstrap_progress(event_type, action, arguments):
    """
    Extracts the bootstrap percentage from a status event.
    :return: the progress as an int, or None if the event is not a well formed bootstrap event.

    >>> bootstrap_progress('STATUS_CLIENT', 'BOOTSTRAP', {'PROGRESS': '45'})
    45
    >>> bootstrap_progress('STATUS_GENERAL', 'BOOTSTRAP', {'PROGRESS': '45'}) is None
    True
    """
    if event_type != STATUS_CLIENT or action != BOOTSTRAP:
        return None
    try:
        return int((arguments or {})[PROGRESS])
    except (KeyError, ValueError, TypeError):
        return None
