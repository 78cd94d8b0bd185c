"""Utilities for MyDeviceAI."""
