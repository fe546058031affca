"""Module: exifproxy.config

Date: 2026-10-19

Configuration package for exifproxy.

- app: package info, logging
- features: exiftool path, timeouts, retry budget, env overrides

All settings are re-exported from this module:
    from exifproxy.config import EXIFTOOL_PATH, LOG_LEVEL
"""

from exifproxy.config.app import *  # noqa: F401, F403
from exifproxy.config.features import *  # noqa: F401, F403
from exifproxy.config.features import ProxySettings  # noqa: F401
