from ledgermatch.sqlModels.uploadEntities import UploadBatch, UploadStatus, SourceKind
from ledgermatch.sqlModels.ledgerEntities import Transaction, CompanyEntry, BankTransactionType, CompanyEntryType
from ledgermatch.sqlModels.reconciliationEntities import ReconciliationMatch, MatchStatus, AnomalySeverity
from ledgermatch.sqlModels.operationEntities import DeletionRequest, DeletionStage

__all__ = [
    "UploadBatch",
    "UploadStatus",
    "SourceKind",
    "Transaction",
    "CompanyEntry",
    "BankTransactionType",
    "CompanyEntryType",
    "ReconciliationMatch",
    "MatchStatus",
    "AnomalySeverity",
    "DeletionRequest",
    "DeletionStage",
]
