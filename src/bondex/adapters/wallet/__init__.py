from ...config.app_config import SignerSettings
from ...domain.errors import ConfigurationError
from ...ports.wallet import WalletPort
from .local_signer import LocalKeypairSigner, load_keypair
from .remote_signer import RemoteSigner


def build_wallet(settings: SignerSettings) -> WalletPort:
    """Pick the signer variant named by signer.mode."""
    if settings.mode == "local":
        return LocalKeypairSigner.from_base58(settings.private_key)
    if settings.mode == "remote":
        return RemoteSigner(
            url=settings.remote_url,
            public_key=settings.remote_public_key,
            api_key=settings.remote_api_key,
        )
    raise ConfigurationError(f"Unknown signer mode '{settings.mode}'")


__all__ = ["LocalKeypairSigner", "RemoteSigner", "build_wallet", "load_keypair"]
