"""Staged deployment orchestrator for a containerized application stack."""

__version__ = "0.1.0"
