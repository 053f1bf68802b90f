"""Multi-tenant LINE Official Account inbox service."""
