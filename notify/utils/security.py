"""
Security utilities for Notify.

Webhook shared-secret verification, response security headers and safe
storage names for uploaded files.
"""

import hmac
import os
import re
from functools import wraps
from typing import Optional

from flask import make_response

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.\-_]")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def verify_webhook_token(provided: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare a webhook token with the configured secret in constant time.

    An unset secret never verifies.
    """
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def apply_security_headers(response):
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    return response


def secure_headers(func):
    """Decorator to add security headers to response"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        return apply_security_headers(make_response(func(*args, **kwargs)))

    return wrapper


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename for safe storage

    Args:
        filename: Original filename

    Returns:
        Sanitized filename
    """
    filename = os.path.basename(filename or "")
    filename = _UNSAFE_FILENAME_CHARS.sub("_", filename)
    filename = filename.strip(". ")

    if not filename:
        filename = "unnamed_file"

    if len(filename) > 200:
        name, ext = os.path.splitext(filename)
        filename = name[: 200 - len(ext)] + ext

    return filename
