"""
The network agent process: its base configuration, its data directory and authentication cookie,
and the processes for the agent and its pluggable transport helper.
"""
import logging
import os
import subprocess
import tempfile

from onionctl.config.config import os_name
from onionctl.support.mixins import StringerMixin

logger = logging.getLogger(__name__)

COOKIE_FILE = 'control_auth_cookie'

TRANSPORT_ENVIRONMENT = (
    ('TOR_PT_MANAGED_TRANSPORT_VER', '1'),
    ('TOR_PT_CLIENT_TRANSPORTS', 'obfs4,meek_lite,obfs2,obfs3,scramblesuit'),
)


class LaunchError(Exception):
    """ Indicates the agent or helper process could not be started. """


class CookieUnreadableError(Exception):
    """ The authentication cookie could not be read, typically because the agent has not written it yet. """


def cache_directory(system=None, environ=os.environ):
    """
    The per-user cache location. Data kept here survives restarts but can be regenerated, so it is not
    backed up.

    >>> cache_directory('osx', {'HOME': '/Users/a'})
    '/Users/a/Library/Caches'
    >>> cache_directory('linux', {'XDG_CACHE_HOME': '/var/cache/a'})
    '/var/cache/a'
    """
    system = system or os_name()
    home = environ.get('HOME') or os.path.expanduser('~')
    if system == 'osx':
        return os.path.join(home, 'Library', 'Caches')
    return environ.get('XDG_CACHE_HOME') or os.path.join(home, '.cache')


def _existing_or_empty(path):
    return path if path and os.path.exists(path) else ''


class AgentConfiguration(StringerMixin):
    """
    The fixed part of the agent's configuration.

    Argument building never fails: resource files that are missing are passed as empty values.

    :param data_dir: the agent data directory. Defaults to <cache>/onionctl/tor
    """

    def __init__(self, data_dir=None, control_host='127.0.0.1', control_port=39060, socks_port=39050,
                 obfs4_port=47351, meek_port=47352, geoip_file='', geoip6_file='', debug=False):
        self.data_dir = data_dir or os.path.join(cache_directory(), 'onionctl', 'tor')
        self.control_host = control_host
        self.control_port = control_port
        self.socks_port = socks_port
        self.obfs4_port = obfs4_port
        self.meek_port = meek_port
        self.geoip_file = geoip_file
        self.geoip6_file = geoip6_file
        self.debug = debug

    @property
    def auth_dir(self):
        """ the directory holding v3 onion service client authorization keys """
        return os.path.join(self.data_dir, 'auth')

    @property
    def cookie_path(self):
        return os.path.join(self.data_dir, COOKIE_FILE)

    @property
    def log_sink(self):
        return 'notice stdout' if self.debug else 'notice file %s' % os.devnull

    def prepare(self):
        """ creates the data and auth directories if they do not yet exist. """
        for d in (self.data_dir, self.auth_dir):
            try:
                os.makedirs(d, exist_ok=True)
            except OSError as e:
                logger.warning("unable to create directory %s: %s" % (d, e))

    def base_arguments(self):
        loopback = '127.0.0.1'
        return [
            '--allow-missing-torrc',
            '--ignore-missing-torrc',
            '--ClientOnly', '1',
            '--AvoidDiskWrites', '1',
            '--SocksPort', '%s:%d' % (loopback, self.socks_port),
            '--ControlPort', '%s:%d' % (self.control_host, self.control_port),
            '--CookieAuthentication', '1',
            '--Log', self.log_sink,
            '--ClientUseIPv6', '1',
            '--ClientTransportPlugin', 'obfs4 socks5 %s:%d' % (loopback, self.obfs4_port),
            '--ClientTransportPlugin', 'meek_lite socks5 %s:%d' % (loopback, self.meek_port),
            '--GeoIPFile', _existing_or_empty(self.geoip_file),
            '--GeoIPv6File', _existing_or_empty(self.geoip6_file),
            '--DataDirectory', self.data_dir,
            '--ClientOnionAuthDir', self.auth_dir,
        ]

    def read_cookie(self):
        """
        :return: the cookie bytes, or None if the cookie cannot be read.
        """
        try:
            return self.load_cookie()
        except CookieUnreadableError as e:
            logger.debug(e)
            return None

    def load_cookie(self):
        """
        :return: the cookie bytes
        :raises CookieUnreadableError: when the cookie file is missing, unreadable or empty
        """
        path = self.cookie_path
        try:
            with open(path, 'rb') as f:
                cookie = f.read()
        except OSError as e:
            raise CookieUnreadableError("cookie unreadable at %s" % path) from e
        if not cookie:
            raise CookieUnreadableError("cookie empty at %s" % path)
        return cookie


class ManagedProcess:
    """ A child process started on demand and terminated on request. """

    def __init__(self, image, args=(), cwd=None, env=None):
        self.image = image
        self.args = list(args)
        self.cwd = cwd
        self.env = env
        self.process = None
        self._cancelled = False

    @property
    def running(self):
        """ True while the process has been started, not cancelled and has not exited. """
        return self.process is not None and not self._cancelled and self.process.poll() is None

    @property
    def cancelled(self):
        return self._cancelled

    def start(self):
        """
        Starts the process.
        :raises LaunchError: if the image cannot be executed.
        """
        if self.running:
            return
        try:
            self.process = subprocess.Popen([self.image] + self.args, cwd=self.cwd, env=self.env,
                                            stdin=subprocess.DEVNULL)
            self._cancelled = False
        except (OSError, ValueError) as e:
            raise LaunchError("unable to start %s: %s" % (self.image, e)) from e
        logger.info("started %s (pid %s)" % (self.image, self.process.pid))

    def cancel(self, timeout=5):
        """ terminates the process. Safe to call when not started. """
        self._cancelled = True
        process = self.process
        if process is None:
            return
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout)
            except subprocess.TimeoutExpired:
                logger.warning("%s did not exit, killing" % self.image)
                process.kill()
                process.wait()


class AgentProcess(ManagedProcess):
    """ The network agent, started with the full argument list. """

    def __init__(self, arguments, executable='tor'):
        super().__init__(executable, arguments)


def transport_environment(environ=os.environ, temp_dir=None):
    """
    The environment for a pluggable transport helper run stand-alone.
    Values already present in environ are kept.
    """
    env = dict(environ)
    for key, value in TRANSPORT_ENVIRONMENT:
        env.setdefault(key, value)
    env.setdefault('TOR_PT_STATE_LOCATION', os.path.join(temp_dir or tempfile.gettempdir(), 'pt_state'))
    return env


class TransportHelper(ManagedProcess):
    """ The pluggable transport helper (obfs4, meek_lite) the agent's transport plugins point to. """

    def __init__(self, executable='lyrebird', environ=os.environ):
        super().__init__(executable, env=transport_environment(environ))

    def stop(self):
        self.cancel()
