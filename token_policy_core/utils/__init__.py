"""Utility modules for the token policy core."""

# Request path helpers
from .client_ip_utils import extract_client_ip, normalize_ip
from .curfew_utils import is_within_curfew, normalize_curfew_pair, parse_hhmm

# Encryption utilities
from .encryption_utils import decrypt_secret, decrypt_value, encrypt_secret, encrypt_value

# Logging utilities
from .logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    CorrelationContextFilter,
    configure_logging,
    get_logger,
    reset_logging,
    secret_preview,
)
from .secret_utils import generate_secret, hash_secret

__all__ = [
    # Request path
    "extract_client_ip",
    "normalize_ip",
    "is_within_curfew",
    "normalize_curfew_pair",
    "parse_hhmm",
    # Encryption
    "decrypt_secret",
    "decrypt_value",
    "encrypt_secret",
    "encrypt_value",
    # Logging
    "AzureQueueHandler",
    "ContextAwareLogger",
    "CorrelationContextFilter",
    "configure_logging",
    "get_logger",
    "reset_logging",
    "secret_preview",
    # Secrets
    "generate_secret",
    "hash_secret",
]
