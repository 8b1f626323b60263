"""
m365broker: credential broker for Microsoft 365 command-line tooling.

Obtains, caches and refreshes OAuth2 access tokens across six
authentication strategies and five cloud environments.
"""

__version__ = "0.1.0"

from .auth.broker import Auth

__all__ = ["Auth", "__version__"]
