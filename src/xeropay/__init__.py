"""
xeropay — Xero payments lookup on a single offline OAuth2 session.

One admin authorizes once; every later lookup reuses the stored session,
refreshing the access token just before it runs out.
"""

__version__ = "0.1.0"
__all__ = ["PaymentsLookup", "XeroPayConfig", "create_app"]

from xeropay.config import XeroPayConfig  # noqa: E402
from xeropay.payments import PaymentsLookup  # noqa: E402
from xeropay.server import create_app  # noqa: E402
