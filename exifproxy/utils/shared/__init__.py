"""Shared helpers used across exifproxy."""
