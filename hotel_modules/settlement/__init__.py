"""
Settlement module: per-booking settlements with adjustments, payments,
refunds, late fees, escalation, communications and disputes.
"""

from hotel_modules.settlement.config import SettlementConfig
from hotel_modules.settlement.models import (
    AdjustmentCategory,
    AdjustmentInput,
    AdjustmentType,
    BookingDetails,
    CommunicationInput,
    DisputeInput,
    DisputeStatus,
    GuestDetails,
    SettlementPaymentInput,
    SettlementPaymentMethod,
    SettlementStatus,
    SettlementTerms,
)
from hotel_modules.settlement.service import SettlementService

__all__ = [
    "AdjustmentCategory",
    "AdjustmentInput",
    "AdjustmentType",
    "BookingDetails",
    "CommunicationInput",
    "DisputeInput",
    "DisputeStatus",
    "GuestDetails",
    "SettlementConfig",
    "SettlementPaymentInput",
    "SettlementPaymentMethod",
    "SettlementService",
    "SettlementStatus",
    "SettlementTerms",
]
