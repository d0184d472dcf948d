from .enums import WalletJobType, WalletJobStatus, WalletJobOutcome, WalletPlatform
from .wallet_jobs import WalletJob
from .passes import Pass, CustomerProgram
from .registrations import WalletRegistration

__all__ = [
    "WalletJobType",
    "WalletJobStatus",
    "WalletJobOutcome",
    "WalletPlatform",
    "WalletJob",
    "Pass",
    "CustomerProgram",
    "WalletRegistration",
]
