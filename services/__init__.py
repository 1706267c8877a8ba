"""
Services Package

Queue, persistence, identification and market-data services.
"""

from .exceptions import (
    ResellException,
    AnalysisError,
    IdentificationFailedError,
    PricingError,
    TransientNetworkError,
    MarketDataUnavailable,
    ExternalServiceError,
    EbayAPIError,
    QuotaExhaustedError,
    ValidationError,
    QueueError,
    JobNotFoundError,
    InvalidTransitionError,
    InvalidPhotosError,
    PersistenceError,
    ConfigurationError,
    MissingAPIKeyError,
)

__all__ = [
    'ResellException',
    'AnalysisError',
    'IdentificationFailedError',
    'PricingError',
    'TransientNetworkError',
    'MarketDataUnavailable',
    'ExternalServiceError',
    'EbayAPIError',
    'QuotaExhaustedError',
    'ValidationError',
    'QueueError',
    'JobNotFoundError',
    'InvalidTransitionError',
    'InvalidPhotosError',
    'PersistenceError',
    'ConfigurationError',
    'MissingAPIKeyError',
]
