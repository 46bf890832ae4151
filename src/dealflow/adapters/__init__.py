"""External collaborator contracts and their HTTP implementations."""

from dealflow.adapters.http import HttpDocumentRenderer, HttpMessageTransport, HttpPaymentGateway
from dealflow.adapters.protocols import (
    Classifier,
    DocumentRenderer,
    MessageTransport,
    PaymentGateway,
    TermsExtractor,
)

__all__ = [
    "Classifier",
    "DocumentRenderer",
    "HttpDocumentRenderer",
    "HttpMessageTransport",
    "HttpPaymentGateway",
    "MessageTransport",
    "PaymentGateway",
    "TermsExtractor",
]
