"""
BYOK key handling.

Modules:
  key_vault   — KeyVault: Fernet encryption under a master key from the environment.
  credentials — Decrypt stored keys into an ExecutionContext; pick a credential tier.
"""
