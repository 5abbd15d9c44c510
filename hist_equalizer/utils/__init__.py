# This file makes the 'utils' directory a Python package.

from .errors import (
    AppError,
    ErrorCategory,
    ConfigurationError,
    CompileError,
    AllocationError,
    TransferError,
    DispatchError,
    DecodeError,
    FileIOError,
    ProcessingError,
    log_error,
    format_user_error,
)
from .profiler import Profiler, ProfilingEvent, format_array

__all__ = [
    # Errors
    'AppError',
    'ErrorCategory',
    'ConfigurationError',
    'CompileError',
    'AllocationError',
    'TransferError',
    'DispatchError',
    'DecodeError',
    'FileIOError',
    'ProcessingError',
    'log_error',
    'format_user_error',
    # Profiling
    'Profiler',
    'ProfilingEvent',
    'format_array',
]
