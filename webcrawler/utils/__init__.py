"""
Utility modules for the web crawler system.
"""

from .config import Config, ConfigManager, load_config, read_config

__all__ = ['Config', 'ConfigManager', 'load_config', 'read_config']
