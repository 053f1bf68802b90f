"""Inbox services: ingestion, dispatch, broadcast, realtime and access control."""
