from .api import batchify as batchify
from .api import batchify_from_env as batchify_from_env
from .client import ResourceClient as ResourceClient
from .config import BatcherConfig as BatcherConfig
from .context import BatchingContext as BatchingContext
from .core import Batcher as Batcher
from .exceptions import BatchError as BatchError
from .exceptions import CancellationError as CancellationError
from .exceptions import ConfigurationError as ConfigurationError
from .exceptions import MissingResponseError as MissingResponseError
from .exceptions import PerOperationError as PerOperationError
from .exceptions import TransportError as TransportError

__all__ = [
    "Batcher",
    "BatcherConfig",
    "BatchingContext",
    "ResourceClient",
    "batchify",
    "batchify_from_env",
    "BatchError",
    "TransportError",
    "PerOperationError",
    "CancellationError",
    "MissingResponseError",
    "ConfigurationError",
]
