"""trackline: event tracking client with offline queueing and batched delivery."""

__version__ = "0.4.0"

from .config import TrackerConfig, load_config  # noqa: E402
from .errors import (  # noqa: E402
    PersistenceError,
    PropertyValidationError,
    TracklineError,
    TransportError,
    UnknownInstanceError,
)
from .identity import MachineIdentifierProvider, RandomIdentifierProvider  # noqa: E402
from .lifecycle import LifecycleNotifier, LifecycleSignal, default_notifier  # noqa: E402
from .persistence import FileStore, MemoryStore  # noqa: E402
from .registry import (  # noqa: E402
    get_instance,
    init,
    remove_instance,
    reset_registry,
    shared_instance,
)
from .tracker import Tracker  # noqa: E402
from .transport import AckInfo, RequestsTransport  # noqa: E402

__all__ = [
    "AckInfo",
    "FileStore",
    "LifecycleNotifier",
    "LifecycleSignal",
    "MachineIdentifierProvider",
    "MemoryStore",
    "PersistenceError",
    "PropertyValidationError",
    "RandomIdentifierProvider",
    "RequestsTransport",
    "Tracker",
    "TrackerConfig",
    "TracklineError",
    "TransportError",
    "UnknownInstanceError",
    "__version__",
    "default_notifier",
    "get_instance",
    "init",
    "load_config",
    "remove_instance",
    "reset_registry",
    "shared_instance",
]
