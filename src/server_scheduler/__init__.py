# server_scheduler/__init__.py
import logging

from server_scheduler.config.const import get_installed_version

logger = logging.getLogger(__name__)

__version__ = get_installed_version()
