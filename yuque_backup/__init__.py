"""Incremental backup of Yuque books and documents."""

from .client import RepositoryClient
from .config import Config, load_config
from .limiter import RateLimiter
from .mirror import SyncEngine, SyncSummary
from .store import BackupStore

__version__ = "0.1.0"
