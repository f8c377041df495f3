"""Automations domain - recipient filtering, action dispatch, execution tracking and triggers"""

from .router import router

__all__ = ["router"]
