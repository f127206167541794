"""One-shot provisioning installer service."""
