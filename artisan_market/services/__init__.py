from .admin_audit_log import AdminAuditLog, AuditEntry, AuditSink, SqlAlchemyAuditSink
from .inventory_model import InventoryModel, InventoryValidationResult, RestorationCheck
from .inventory_service import InventoryService
from .promotional_catalog import PromotionalCatalog, compute_cost
from .promotional_feature_service import ExpirationResult, PromotionalFeatureService
from .revenue_recorder import RevenueRecorder
from .scheduling import PromotionExpiryScheduler, RestorationScheduler
from .wallet_ledger import WalletLedger

__all__ = [
    "AdminAuditLog",
    "AuditEntry",
    "AuditSink",
    "SqlAlchemyAuditSink",
    "InventoryModel",
    "InventoryValidationResult",
    "RestorationCheck",
    "InventoryService",
    "PromotionalCatalog",
    "compute_cost",
    "ExpirationResult",
    "PromotionalFeatureService",
    "RevenueRecorder",
    "PromotionExpiryScheduler",
    "RestorationScheduler",
    "WalletLedger",
]
