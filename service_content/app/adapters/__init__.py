"""
Adapters package for the Content Service.

HTTP clients for the two upstreams (CMS and booking) and the resilient
transport they share. Adapters:

- Build the upstream request shapes and attach credentials
- Retry through ``ResilientTransport``
- Translate failed responses into ``shared.errors`` types
"""

from .booking_client import BookingClient
from .cms_client import CmsClient
from .transport import ResilientTransport, request_deadline

__all__ = [
    "BookingClient",
    "CmsClient",
    "ResilientTransport",
    "request_deadline",
]
