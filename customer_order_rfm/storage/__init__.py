"""Persistence of the customer/order aggregate."""

from .backends import (
    DocumentStore,
    InMemoryDocumentStore,
    SQLDocumentStore,
    create_store,
)
from .repository import (
    CustomerRepository,
    PersistenceError,
    SaveResult,
    customer_to_document,
    document_to_customer,
    merge_customer,
    sanitize_document,
)

__all__ = [
    "CustomerRepository",
    "DocumentStore",
    "InMemoryDocumentStore",
    "PersistenceError",
    "SQLDocumentStore",
    "SaveResult",
    "create_store",
    "customer_to_document",
    "document_to_customer",
    "merge_customer",
    "sanitize_document",
]
