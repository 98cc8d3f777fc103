"""Monitoring module."""
