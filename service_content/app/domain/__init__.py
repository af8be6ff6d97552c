"""
Request models shared by the Content Service routes.
"""

from .requests import PublicLeadRequest, ResolveReferencesRequest, ScheduleCreateRequest

__all__ = [
    "PublicLeadRequest",
    "ResolveReferencesRequest",
    "ScheduleCreateRequest",
]
