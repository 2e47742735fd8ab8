"""Tenantgate: identity and onboarding service for multi-tenant workspaces."""

__version__ = "0.1.0"
