"""Dependency injection for FastAPI endpoints"""

from fastapi import Request

from returns_engine.infrastructure.clients.payment_rail import PaymentRailClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_rail_client() -> PaymentRailClient:
    """Provide payment rail client instance"""
    return PaymentRailClient()
