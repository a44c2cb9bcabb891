"""Yardmaster - template-driven workspace provisioning orchestrator."""
