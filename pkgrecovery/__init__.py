from importlib import metadata

try:
    __version__ = metadata.version("pkgrecovery")
except metadata.PackageNotFoundError:
    __version__ = "0.1.0"

from .cli import main  # noqa: E402

__all__ = ["__version__", "main"]
