"""
Transport layer for HTTP communication with providers and mirrors.
"""

from resilient_relay.transport.http import HttpTransport, error_from_response, extract_error_message

__all__ = [
    "HttpTransport",
    "error_from_response",
    "extract_error_message",
]
