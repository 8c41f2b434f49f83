"""Vendor collectors for patch-health-hub."""
