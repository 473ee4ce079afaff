from src.models.quote import Quote, RouteHop
from src.models.risk import LEVEL_LOW, RiskAssessment, RiskCategory, RiskFinding, Severity
from src.models.token import (
    AccountModelToken,
    ContractModelToken,
    MintExtension,
    NonTransferableExtension,
    PermanentDelegateExtension,
    TokenMetadata,
    TransferFeeExtension,
    TransferHookExtension,
    UnknownExtension,
)
from src.models.trade import (
    AUTO_FEE,
    AttemptOutcome,
    ConfirmationResult,
    FeeHints,
    FeeSetting,
    SignedTransaction,
    SwapAttempt,
    SwapReceipt,
    TradeRequest,
)

__all__ = [
    "AccountModelToken",
    "ContractModelToken",
    "TokenMetadata",
    "MintExtension",
    "TransferFeeExtension",
    "PermanentDelegateExtension",
    "NonTransferableExtension",
    "TransferHookExtension",
    "UnknownExtension",
    "Quote",
    "RouteHop",
    "Severity",
    "RiskCategory",
    "RiskFinding",
    "RiskAssessment",
    "LEVEL_LOW",
    "AUTO_FEE",
    "FeeSetting",
    "AttemptOutcome",
    "TradeRequest",
    "FeeHints",
    "SignedTransaction",
    "ConfirmationResult",
    "SwapAttempt",
    "SwapReceipt",
]
