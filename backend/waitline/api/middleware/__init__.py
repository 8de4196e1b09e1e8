"""
API middleware module.
"""
from waitline.api.middleware.error_handler import (
    AppException,
    NotFoundException,
    BadRequestException,
    ConflictException,
    ServiceUnavailableException,
    to_app_exception,
    app_exception_handler,
    queue_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)

__all__ = [
    "AppException",
    "NotFoundException",
    "BadRequestException",
    "ConflictException",
    "ServiceUnavailableException",
    "to_app_exception",
    "app_exception_handler",
    "queue_exception_handler",
    "validation_exception_handler",
    "http_exception_handler",
    "unhandled_exception_handler",
]
