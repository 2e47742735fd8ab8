"""Schemas shared between the Tenantgate API server and its background worker."""
