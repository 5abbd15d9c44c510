# Centralized error handling utilities
"""
Provides consistent error handling across the equalization pipeline.

This module defines:
- Custom exception classes for each failure category of a run
- Utility functions for error logging and user messaging

Every error defined here is fatal for the current run: it propagates to the
command line entry point, which reports it and exits with a non-zero status.
"""

from typing import Optional, Union
from enum import Enum

from .logger import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for consistent handling."""
    CONFIGURATION = "configuration"  # Bad platform/device/channel selection
    COMPILE = "compile"              # Kernel build failures
    ALLOCATION = "allocation"        # Device memory exhaustion
    TRANSFER = "transfer"            # Host <-> device copies
    DISPATCH = "dispatch"            # Kernel execution
    DECODE = "decode"                # Unreadable input image
    FILE_IO = "file_io"              # File system errors
    PROCESSING = "processing"        # Invariant violations in stage output


class AppError(Exception):
    """Base exception for application-specific errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.PROCESSING,
        original_error: Optional[Exception] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.category = category
        self.original_error = original_error
        self.user_message = user_message or message

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.args[0]} (caused by: {type(self.original_error).__name__})"
        return self.args[0]


class ConfigurationError(AppError):
    """Invalid platform, device, channel or workgroup selection."""

    def __init__(self, message: str, setting_name: Optional[str] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)
        self.setting_name = setting_name


class CompileError(AppError):
    """Kernel program build failure. Carries the backend's build log."""

    def __init__(self, message: str, kernel_name: Optional[str] = None,
                 build_log: str = "", **kwargs):
        super().__init__(message, category=ErrorCategory.COMPILE, **kwargs)
        self.kernel_name = kernel_name
        self.build_log = build_log


class AllocationError(AppError):
    """Device buffer allocation failure."""

    def __init__(self, message: str, size_bytes: int = 0, **kwargs):
        super().__init__(message, category=ErrorCategory.ALLOCATION, **kwargs)
        self.size_bytes = size_bytes


class TransferError(AppError):
    """Host <-> device copy failure."""

    def __init__(self, message: str, buffer_label: Optional[str] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.TRANSFER, **kwargs)
        self.buffer_label = buffer_label


class DispatchError(AppError):
    """Kernel dispatch failure."""

    def __init__(self, message: str, kernel_name: Optional[str] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.DISPATCH, **kwargs)
        self.kernel_name = kernel_name


class DecodeError(AppError):
    """Input image could not be read or decoded."""

    def __init__(self, message: str, file_path: Optional[str] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.DECODE, **kwargs)
        self.file_path = file_path


class FileIOError(AppError):
    """File I/O related errors."""

    def __init__(self, message: str, file_path: Optional[str] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.FILE_IO, **kwargs)
        self.file_path = file_path


class ProcessingError(AppError):
    """A stage produced output that violates the pipeline invariants."""

    def __init__(self, message: str, step: Optional[str] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.PROCESSING, **kwargs)
        self.step = step


def log_error(error: AppError, level: str = "error") -> None:
    """
    Log an application error with its category.

    Build failures additionally log the build log so diagnostics are visible
    before the run aborts.
    """
    log_func = getattr(logger, level, logger.error)
    log_func("[%s] %s", error.category.value, str(error))
    if isinstance(error, CompileError) and error.build_log:
        log_func("Build log for %s:\n%s", error.kernel_name or "program", error.build_log)


def format_user_error(error: Union[Exception, str], context: Optional[str] = None) -> str:
    """
    Format an error message for user display.

    Args:
        error: The error or error message.
        context: Optional context about what operation failed.

    Returns:
        User-friendly error message.
    """
    if isinstance(error, AppError):
        return error.user_message

    error_str = str(error)

    # Clean up common technical error messages
    if "No such file or directory" in error_str:
        return f"File not found{f' while {context}' if context else ''}"
    if "Permission denied" in error_str:
        return f"Permission denied{f' while {context}' if context else ''}"
    if "out of memory" in error_str.lower():
        return "Not enough device memory to complete this operation. Try with a smaller image."

    # Generic fallback
    if context:
        return f"Error {context}: {error_str}"
    return f"An error occurred: {error_str}"
