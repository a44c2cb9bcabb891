"""Workspace orchestrator service."""
