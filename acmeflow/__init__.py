from .client import AcmeAccount, AcmeClient
from .plugin_base import PluginRegistry
from .service import AccountService, OperationResult
from .version import __version__

__all__ = [
    "AcmeAccount",
    "AcmeClient",
    "AccountService",
    "OperationResult",
    "PluginRegistry",
    "__version__",
]
