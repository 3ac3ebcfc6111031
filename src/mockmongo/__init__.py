"""
mockmongo: transparent ephemeral MongoDB for tests.

Intercepts a client library's connection entry points and routes every
connection to one disposable mongod, launched on demand and shut down
when the last caller disconnects.
"""

from mockmongo.config import InterceptionSettings
from mockmongo.context import (
    MockContext,
    active_context,
    install,
    intercepted,
    reconnect_all,
    reset,
    restore,
)
from mockmongo.errors import (
    FatalLaunchError,
    InterceptionStateError,
    MockMongoError,
    PortContentionError,
    ResetDeletionError,
)
from mockmongo.interception import is_mocked
from mockmongo.service import Phase, ServiceAddress

__version__ = "0.1.0"

__all__ = [
    "FatalLaunchError",
    "InterceptionSettings",
    "InterceptionStateError",
    "MockContext",
    "MockMongoError",
    "Phase",
    "PortContentionError",
    "ResetDeletionError",
    "ServiceAddress",
    "__version__",
    "active_context",
    "install",
    "intercepted",
    "is_mocked",
    "reconnect_all",
    "reset",
    "restore",
]
