"""
Errors raised by gateway API clients.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode


class PaymentProviderError(BusinessException):
    """The gateway answered, but with an error the client cannot recover from"""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: Optional[str] = None,
        retryable: bool = False,
    ):
        self.retryable = retryable
        super().__init__(
            code=BusinessCode.SERVICE_UNAVAILABLE if retryable else BusinessCode.NETWORK_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details={"provider": provider, "provider_code": provider_code},
        )
