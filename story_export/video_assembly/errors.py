"""
Export Errors

Every failure that can end an export run. Each error carries an ErrorKind so
the terminal outcome can name what went wrong without exposing the class.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Kinds of export failure reported to the caller"""
    ENGINE_INIT = "EngineInitError"
    DECODE = "DecodeError"
    ENCODE = "EncodeError"
    CONCAT = "ConcatError"
    RENDER = "RenderError"
    IO = "IOError"
    BUSY = "ExportBusy"
    CANCELLED = "Cancelled"


class ExportError(Exception):
    """Base class for errors that abort an export"""
    kind: ErrorKind = ErrorKind.ENCODE


class EngineInitError(ExportError):
    """The transcoding engine failed to load"""
    kind = ErrorKind.ENGINE_INIT


class DecodeError(ExportError):
    """A source asset could not be read or decoded"""
    kind = ErrorKind.DECODE


class EncodeError(ExportError):
    """An engine invocation failed"""
    kind = ErrorKind.ENCODE

    def __init__(self, message: str, stderr: Optional[str] = None):
        super().__init__(message)
        self.stderr = stderr


class ConcatError(ExportError):
    kind = ErrorKind.CONCAT


class RenderError(ExportError):
    kind = ErrorKind.RENDER


class StorageError(ExportError):
    """Reading or writing the engine's working storage failed"""
    kind = ErrorKind.IO


class DeliveryError(ExportError):
    """The finished video could not be handed to the output sink"""
    kind = ErrorKind.IO


class ExportBusyError(ExportError):
    kind = ErrorKind.BUSY


class ExportCancelledError(ExportError):
    kind = ErrorKind.CANCELLED
