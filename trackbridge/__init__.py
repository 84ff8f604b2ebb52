"""TrackBridge: cross-service tracking ID resolution and progress sync."""

from trackbridge.utils.logging import Logger, get_logger
from trackbridge.utils.version import get_pyproject_version

__author__ = "TrackBridge contributors"
__license__ = "MIT"
__version__ = get_pyproject_version()

log: Logger = get_logger()
