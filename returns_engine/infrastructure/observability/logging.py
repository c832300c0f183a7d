"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from returns_engine.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_wallet_mutation(
    user_id: str,
    kind: str,
    amount_paise: int,
    balance_after_paise: int,
    locked_after_paise: int,
    reference_id: str | None,
) -> None:
    """Log a ledger line for reconciliation trails"""
    logging.info(
        "Wallet mutated",
        extra={
            "user_id": user_id,
            "step": "wallet_mutation",
            "kind": kind,
            "amount_paise": amount_paise,
            "balance_after_paise": balance_after_paise,
            "locked_after_paise": locked_after_paise,
            "reference_id": reference_id,
        },
    )


def log_transition(
    entity_type: str,
    entity_id: str,
    user_id: str,
    from_status: str | None,
    to_status: str,
    event: str,
) -> None:
    """Log a withdrawal or payout status change"""
    logging.info(
        f"{entity_type.capitalize()} transitioned",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "user_id": user_id,
            "step": "state_transition",
            "from_status": from_status,
            "to_status": to_status,
            "event": event,
        },
    )
