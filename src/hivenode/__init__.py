# src/hivenode/__init__.py

from hivenode.bundle.bundle import CommandBundle
from hivenode.errors import (
    BundleError,
    CommandTimeoutError,
    HiveError,
    InvalidCommandError,
    NodeDisposedError,
    RemoteCommandError,
    SshAuthenticationError,
    SshConnectionError,
)
from hivenode.hive import Hive
from hivenode.proxy.node import NodeProxy
from hivenode.ssh.credentials import SshCredentials
from hivenode.ssh.models import DEFAULTS, NONE, CommandResponse, RunOptions

__version__ = "0.1.0"
