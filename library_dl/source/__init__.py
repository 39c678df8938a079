"""
Document Store Layer.

This package handles all communication with the relational document store:
the table schema, a synchronous client over one connection, and the async
gateway that serializes access to it.
"""

from .client import LibraryStoreClient
from .gateway import MetadataGateway

__all__ = ["LibraryStoreClient", "MetadataGateway"]
