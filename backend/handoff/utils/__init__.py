"""
Utility package: retries, telemetry, encryption and clock helpers.
"""
from .clock import utcnow, ensure_aware
from .retry import RetryConfig, CircuitBreaker, async_retry
from .encryption import PayloadCipher, EncryptionError, create_cipher

__all__ = [
    'utcnow',
    'ensure_aware',
    'RetryConfig',
    'CircuitBreaker',
    'async_retry',
    'PayloadCipher',
    'EncryptionError',
    'create_cipher',
]
