"""
Custom Exception Hierarchy for the Resell Queue service

This module provides a structured exception hierarchy for better error handling
and categorization throughout the application.

Usage:
    from services.exceptions import (
        ResellException,
        TransientNetworkError,
        QuotaExhaustedError,
        IdentificationFailedError,
    )

    try:
        estimate = await identifier.identify(photos)
    except TransientNetworkError as e:
        queue.mark_failed(job.id, str(e), counted_against_quota=False)
"""

from typing import Optional, Dict, Any


class ResellException(Exception):
    """
    Base exception for all Resell Queue errors.

    All custom exceptions should inherit from this class to enable
    unified error handling throughout the application.
    """

    def __init__(
        self,
        message: str,
        code: str = "RESELL_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


# ============================================================
# Analysis Errors
# ============================================================

class AnalysisError(ResellException):
    """Base class for errors raised while analyzing a queued job."""

    def __init__(
        self,
        message: str,
        code: str = "ANALYSIS_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, code, details, cause)


class IdentificationFailedError(AnalysisError):
    """
    The identification service produced no usable result.

    `billable` is True when the provider answered (the call consumed quota)
    but the answer could not be used.
    """

    def __init__(
        self,
        reason: str = "Failed to identify product",
        billable: bool = False,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message=reason,
            code="IDENTIFICATION_FAILED",
            details={"billable": billable},
            cause=cause,
        )
        self.billable = billable


class PricingError(AnalysisError):
    """Pricing failed after the item was identified. Billable."""

    def __init__(self, reason: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Pricing failed: {reason}",
            code="PRICING_ERROR",
            details={"billable": True},
            cause=cause,
        )
        self.billable = True


class TransientNetworkError(AnalysisError):
    """Network failure or timeout talking to an upstream service. Retryable."""

    def __init__(
        self,
        service: str,
        message: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message=message or f"Network error contacting {service}",
            code="TRANSIENT_NETWORK_ERROR",
            details={"service": service},
            cause=cause,
        )
        self.service = service


class MarketDataUnavailable(AnalysisError):
    """
    A comparables source returned nothing usable.

    Not a job failure: pricing degrades to the AI estimate.
    """

    def __init__(
        self,
        source: str,
        reason: str = "no data",
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ):
        details = {"source": source, "reason": reason}
        if status_code:
            details["status_code"] = status_code
        super().__init__(
            message=f"Market data unavailable from {source}: {reason}",
            code="MARKET_DATA_UNAVAILABLE",
            details=details,
            cause=cause,
        )
        self.source = source
        self.status_code = status_code


# ============================================================
# External Service Errors
# ============================================================

class ExternalServiceError(ResellException):
    """Base class for external service errors."""

    def __init__(
        self,
        service: str,
        message: str,
        code: str = "EXTERNAL_SERVICE_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        details["service"] = service
        super().__init__(message, code, details, cause)


class EbayAPIError(ExternalServiceError):
    """Error communicating with eBay API."""

    def __init__(
        self,
        message: str = "eBay API request failed",
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ):
        details = {}
        if status_code:
            details["status_code"] = status_code
        super().__init__(
            service="ebay",
            message=message,
            code="EBAY_API_ERROR",
            details=details,
            cause=cause,
        )
        self.status_code = status_code


# ============================================================
# Quota Errors
# ============================================================

class QuotaExhaustedError(ResellException):
    """
    No analysis can be paid for: the monthly quota is used up, or the
    identification provider reports the account's credit is exhausted.
    Pauses the whole queue.
    """

    def __init__(
        self,
        used: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        details = {}
        if used is not None:
            details["used"] = used
        if limit is not None:
            details["limit"] = limit
        message = "Analysis quota exhausted"
        if used is not None and limit is not None:
            message = f"Analysis quota exhausted: {used} / {limit} this month"
        super().__init__(
            message=message,
            code="QUOTA_EXHAUSTED",
            details=details,
        )


# ============================================================
# Validation Errors
# ============================================================

class ValidationError(ResellException):
    """Request data failed validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details=details,
        )


# ============================================================
# Queue Errors
# ============================================================

class QueueError(ResellException):
    """Base class for processing queue errors."""
    pass


class JobNotFoundError(QueueError):
    """No job with this id exists in the queue."""

    def __init__(self, job_id: str):
        super().__init__(
            message=f"Job '{job_id}' not found in queue",
            code="JOB_NOT_FOUND",
            details={"job_id": job_id},
        )


class InvalidTransitionError(QueueError):
    """A job state change that the state machine does not allow."""

    def __init__(self, job_id: str, current: str, target: str, reason: str = ""):
        message = f"Cannot move job '{job_id}' from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message=message,
            code="INVALID_TRANSITION",
            details={"job_id": job_id, "from": current, "to": target},
        )


class InvalidPhotosError(QueueError):
    """Photo payload count or content is invalid."""

    def __init__(self, count: int, maximum: int):
        super().__init__(
            message=f"A job needs between 1 and {maximum} photos, got {count}",
            code="INVALID_PHOTOS",
            details={"count": count, "max": maximum},
        )


# ============================================================
# Persistence Errors
# ============================================================

class PersistenceError(ResellException):
    """Saving or loading queue state failed. Logged, never fatal to the queue."""

    def __init__(
        self,
        operation: str,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message=f"Queue persistence failed during {operation}",
            code="PERSISTENCE_ERROR",
            details={"operation": operation},
            cause=cause,
        )


# ============================================================
# Configuration Errors
# ============================================================

class ConfigurationError(ResellException):
    """Configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details=details,
        )


class MissingAPIKeyError(ConfigurationError):
    """Required API key is missing."""

    def __init__(self, service: str, config_key: Optional[str] = None):
        super().__init__(
            message=f"Missing API key for {service}",
            config_key=config_key or f"{service.upper()}_API_KEY",
        )
        self.code = "MISSING_API_KEY"
