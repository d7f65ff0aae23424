"""Application layer: use cases, ports, and DTOs. Depends only on domain."""

from reconcile.application.contact_service import ContactService
from reconcile.application.dto import ConsolidatedContact, IdentifyRequest
from reconcile.application.errors import (
    ConsistencyError,
    InvalidObservation,
    ReconciliationError,
    TransientStoreError,
    WriteConflict,
)
from reconcile.application.materializer import MAX_LINK_DEPTH, ClusterMaterializer
from reconcile.application.ports import ContactStore, StoreTransaction
from reconcile.application.view import build_consolidated_view

__all__ = [
    "MAX_LINK_DEPTH",
    "ClusterMaterializer",
    "ConsistencyError",
    "ConsolidatedContact",
    "ContactService",
    "ContactStore",
    "IdentifyRequest",
    "InvalidObservation",
    "ReconciliationError",
    "StoreTransaction",
    "TransientStoreError",
    "WriteConflict",
    "build_consolidated_view",
]
