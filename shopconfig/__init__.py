"""
Storefront admin configuration with platform-adaptive storage.
"""

from .core.config import VERSION

__version__ = VERSION
