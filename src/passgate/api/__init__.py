# API Module
"""
JSON request handling for the ceremony, credential and login endpoints.
"""

from .handlers import CeremonyAPI, error_response
from .schemas import parse_request

__all__ = [
    'CeremonyAPI',
    'error_response',
    'parse_request',
]
