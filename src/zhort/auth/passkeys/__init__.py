"""Passkey (WebAuthn) authentication for Zhort."""
