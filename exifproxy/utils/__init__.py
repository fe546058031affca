"""Shared utilities: logging helpers and external tool lookup."""
