"""Sentinel configuration."""
