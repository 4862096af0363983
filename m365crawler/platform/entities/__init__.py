"""The crawler entities module.

Contains the resource, request and page models shared by walkers and the sync core.
"""

from ._base import (
    Breadcrumb,
    CrawlStats,
    Page,
    RequestDescriptor,
    ResourceFamily,
    ResourceHandle,
    ResourceKind,
)

__all__ = [
    "Breadcrumb",
    "CrawlStats",
    "Page",
    "RequestDescriptor",
    "ResourceFamily",
    "ResourceHandle",
    "ResourceKind",
]
