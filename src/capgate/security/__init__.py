from capgate.security.vault import CredentialVault, get_vault

__all__ = ["CredentialVault", "get_vault"]
