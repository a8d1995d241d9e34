"""Structured JSON logging for production observability"""

import logging
import sys
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from stipend_service.utils.date_utils import utcnow


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def __init__(self, *args, service_name: str = "stipend-service", **kwargs):
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = self.service_name


def setup_logging(level: str = "INFO", service_name: str = "stipend-service") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        service_name=service_name,
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_transfer_outcome(
    request_id: str,
    transaction_id: str,
    stipend_id: str,
    status: str,
    attempt: int,
    duration_ms: float,
) -> None:
    """Log structured settlement outcome for reconciliation"""
    logging.getLogger("stipend_service.transfers").info(
        "Settlement completed",
        extra={
            "request_id": request_id,
            "transaction_id": transaction_id,
            "stipend_id": stipend_id,
            "step": "settlement_complete",
            "transaction_status": status,
            "attempt": attempt,
            "duration_ms": duration_ms,
        },
    )
