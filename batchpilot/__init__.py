"""
batchpilot - Batch pool lifecycle runner

Creates or reuses a compute pool, runs a batch of tasks on it, waits for
the batch under hard timeouts, and cleans up afterwards.
"""

__version__ = "0.1.0"


__all__ = ["BatchpilotConfig", "load_config", "get_batchpilot_home"]

from .config import BatchpilotConfig, load_config, get_batchpilot_home
