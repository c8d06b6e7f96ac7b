"""BLE poller - periodic heart beat reader for a BLE peripheral."""

__version__ = "0.1.0"

from .config import AppConfig, load_config
from .logs import NdjsonLogger
from .poller import PollOutcome, PollResult, Poller, Reading

__all__ = ["AppConfig", "load_config", "NdjsonLogger", "Poller", "PollOutcome", "PollResult", "Reading"]
