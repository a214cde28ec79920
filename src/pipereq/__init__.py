"""Chainable HTTP request builder with streaming relays."""

import logging

from .bodies import FormBody, ForwardedBody, JSONBody, RawBody
from .client import ExchangeResult, ReqBuilder
from .exceptions import (
    ReqConfigError,
    ReqDecodeError,
    ReqError,
    ReqHTTPError,
    ReqRelayError,
    ReqSerializationError,
    ReqTimeoutError,
    ReqTransportError,
)
from .relay import InboundRequest, ResponseWriter
from .request_options import DEFAULT_OPTIONS, ReqOptions, merge_options
from .transport import HttpTransport

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "DEFAULT_OPTIONS",
    "ExchangeResult",
    "FormBody",
    "ForwardedBody",
    "HttpTransport",
    "InboundRequest",
    "JSONBody",
    "RawBody",
    "ReqBuilder",
    "ReqConfigError",
    "ReqDecodeError",
    "ReqError",
    "ReqHTTPError",
    "ReqOptions",
    "ReqRelayError",
    "ReqSerializationError",
    "ReqTimeoutError",
    "ReqTransportError",
    "ResponseWriter",
    "merge_options",
]
