"""Email gateways: the delivery providers the engine sends through."""

from .base import EmailGateway, ErrorClass, SendResult
from .factory import get_gateway
from .log import LoggingEmailGateway
from .resend import ResendEmailGateway
from .smtp import SMTPEmailGateway, build_sender_address

__all__ = [
    "EmailGateway",
    "ErrorClass",
    "LoggingEmailGateway",
    "ResendEmailGateway",
    "SMTPEmailGateway",
    "SendResult",
    "build_sender_address",
    "get_gateway",
]
