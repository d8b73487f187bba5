# src/core/__init__.py
"""
Доменный слой.
Реакции на доменные события поверх роутера.
"""

from src.core.refresh_bridge import RefreshBridge, register_refresh_handlers

__all__ = [
    "RefreshBridge",
    "register_refresh_handlers",
]
