"""Configuration Package."""
from .settings import (
    CONFIG,
    Config,
    EngineConfig,
    LoggingConfig,
    SharedStoreConfig,
)

__all__ = [
    'CONFIG',
    'Config',
    'EngineConfig',
    'SharedStoreConfig',
    'LoggingConfig',
]
