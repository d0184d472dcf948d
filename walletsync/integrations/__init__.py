"""
Integrations package initialization.
Exports the wallet vendor drivers.
"""
from .google_wallet import GoogleWalletClient, GoogleWalletDriver
from .apns import ApnsClient
from .apple_wallet import AppleWalletDriver
from .pass_bundle import PassBundleBuilder, PassSigner
from .pass_storage import FilesystemPassPublisher

__all__ = [
    "GoogleWalletClient",
    "GoogleWalletDriver",
    "ApnsClient",
    "AppleWalletDriver",
    "PassBundleBuilder",
    "PassSigner",
    "FilesystemPassPublisher",
]
