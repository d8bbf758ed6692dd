"""Resource client interface and the Appwrite REST adapter."""

from .base import Query, ResourceClient
from .appwrite import AppwriteClient, decode_response_body

__all__ = [
    'Query',
    'ResourceClient',
    'AppwriteClient',
    'decode_response_body',
]
