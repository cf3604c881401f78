"""
Centralized Error Handling
Exception taxonomy for the liveness monitor
"""
import logging
from typing import Optional, Dict, Any
from enum import Enum

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Standard error codes for the monitor"""
    # Credential errors (1xxx)
    TOKEN_EXCHANGE_ERROR = 1001
    TOKEN_MISSING = 1002

    # Broker transport errors (2xxx)
    BROKER_CONNECTION_ERROR = 2001
    BROKER_SUBSCRIBE_ERROR = 2002
    BROKER_TIMEOUT = 2003

    # Telemetry decoding errors (3xxx)
    MALFORMED_PAYLOAD = 3001
    UNRECOGNIZED_TOPIC = 3002

    # Persistence errors (4xxx)
    SNAPSHOT_WRITE_ERROR = 4001
    SNAPSHOT_READ_ERROR = 4002

    # System errors (9xxx)
    CONFIGURATION_ERROR = 9001
    UNKNOWN_ERROR = 9999


class MonitorError(Exception):
    """
    Base exception for liveness monitor errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize exception.

        Args:
            message: Error message
            error_code: Error code enum
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or ErrorCode.UNKNOWN_ERROR
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary"""
        return {
            'error': self.__class__.__name__,
            'message': self.message,
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'details': self.details
        }


class AuthError(MonitorError):
    """Credential exchange failed; retried on the next reconnect or refresh"""
    def __init__(
        self,
        message: str,
        details: Optional[Dict] = None,
        error_code: ErrorCode = ErrorCode.TOKEN_EXCHANGE_ERROR
    ):
        super().__init__(message, error_code, details)


class TransportError(MonitorError):
    """Broker connection or subscribe failure"""
    def __init__(
        self,
        message: str,
        details: Optional[Dict] = None,
        error_code: ErrorCode = ErrorCode.BROKER_CONNECTION_ERROR
    ):
        super().__init__(message, error_code, details)


class DecodeError(MonitorError):
    """Malformed or unrecognized telemetry message"""
    def __init__(
        self,
        message: str,
        details: Optional[Dict] = None,
        error_code: ErrorCode = ErrorCode.MALFORMED_PAYLOAD
    ):
        super().__init__(message, error_code, details)


class PersistenceError(MonitorError):
    """Snapshot read or write failure"""
    def __init__(
        self,
        message: str,
        details: Optional[Dict] = None,
        error_code: ErrorCode = ErrorCode.SNAPSHOT_WRITE_ERROR
    ):
        super().__init__(message, error_code, details)


class ConfigurationError(MonitorError):
    """Configuration error"""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)
