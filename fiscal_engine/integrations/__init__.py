# Integrations Package - External gateway clients
from .base import BaseGatewayClient
from .ferma import FermaClient, build_receipt_payload, build_receipt_view_url
from .rocketwork import ExecutorInfo, RocketWorkClient, TaskStatus
from .http import discard_response, send_and_read

__all__ = [
    "BaseGatewayClient",
    "FermaClient",
    "build_receipt_payload",
    "build_receipt_view_url",
    "RocketWorkClient",
    "TaskStatus",
    "ExecutorInfo",
    "send_and_read",
    "discard_response",
]
