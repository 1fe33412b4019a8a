"""
SSH plugin subprocess protocol
"""

from .executor import PluginExecutor, REACHABILITY, METRICS

__all__ = ['PluginExecutor', 'REACHABILITY', 'METRICS']
