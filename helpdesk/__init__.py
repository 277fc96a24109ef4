"""Tiered support-ticket workflow service."""
