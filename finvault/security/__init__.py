"""Key material for the encrypted ledger store."""

from finvault.security.cipher import MasterKeyCipher
from finvault.security.key_manager import EncryptionKeyManager, StoreReencryptor

__all__ = ["EncryptionKeyManager", "MasterKeyCipher", "StoreReencryptor"]
