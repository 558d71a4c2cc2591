"""
Service surface: authorization boundary, result envelopes and the façade.
"""

from hotel_services.authorization import OPERATION_ROLES, authorize
from hotel_services.facade import HotelFinanceFacade
from hotel_services.results import ErrorInfo, ResultStatus, ServiceResult, render_to_dict

__all__ = [
    "OPERATION_ROLES",
    "ErrorInfo",
    "HotelFinanceFacade",
    "ResultStatus",
    "ServiceResult",
    "authorize",
    "render_to_dict",
]
