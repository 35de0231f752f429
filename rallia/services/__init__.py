"""
Services package for the Rallia rating engine.

Facades the app screens call into, built on the operations layer.
"""

from .base import BaseService
from .sport_profile import SportProfileService

__all__ = ['BaseService', 'SportProfileService']
