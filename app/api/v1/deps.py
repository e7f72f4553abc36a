"""
Service wiring for the v1 endpoints
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.database import get_session_factory
from app.services.availability_service import AvailabilityService, availability_service
from app.services.booking_service import BookingService
from app.services.ledger_service import LedgerService
from app.services.payment_gateway import PaymentGateway, payment_gateway
from app.services.refund_service import RefundService
from app.services.reservation_service import ReservationService
from app.services.settlement_service import SettlementService


def get_payment_gateway() -> PaymentGateway:
    return payment_gateway


def get_availability_service() -> AvailabilityService:
    return availability_service


def get_ledger_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> LedgerService:
    return LedgerService(session_factory)


def get_reservation_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> ReservationService:
    return ReservationService(session_factory, gateway=gateway)


def get_refund_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> RefundService:
    return RefundService(session_factory, gateway=gateway)


def get_booking_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    refunds: RefundService = Depends(get_refund_service),
) -> BookingService:
    return BookingService(session_factory, refunds=refunds)


def get_settlement_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    refunds: RefundService = Depends(get_refund_service),
) -> SettlementService:
    return SettlementService(session_factory, gateway=gateway, refunds=refunds)
