"""
Divan Python SDK
Minimal client for CouchDB-style document databases over HTTP.
"""

from .client import DivanClient, Database, View, ViewResult
from .errors import (
    ConflictError,
    ConnectionError,
    DecodeError,
    DivanError,
    EncodeError,
    HTTPStatusError,
    NotFoundError,
    RequestError,
    ResponseBodyError,
)
from .ids import new_id, random_hex

__version__ = "0.1.0"
__all__ = [
    "DivanClient",
    "Database",
    "View",
    "ViewResult",
    "DivanError",
    "RequestError",
    "ConnectionError",
    "HTTPStatusError",
    "ConflictError",
    "NotFoundError",
    "ResponseBodyError",
    "EncodeError",
    "DecodeError",
    "new_id",
    "random_hex",
]
