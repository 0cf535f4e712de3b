"""
Maintenance services for the diagnostic data layer.
"""
from .tv_interface_optimizer import TVInterfaceOptimizer

__all__ = [
    "TVInterfaceOptimizer",
]
