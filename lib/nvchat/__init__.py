"""Terminal chat client for the NVIDIA build chat-completion API."""
from importlib.metadata import PackageNotFoundError, version as _pkg_version

try:
    __version__ = _pkg_version("nvidia-chat")
except PackageNotFoundError:  # running from source tree
    __version__ = "0.0.0.dev0"

__all__ = ["__version__"]
