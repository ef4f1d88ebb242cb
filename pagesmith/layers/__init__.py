"""Sense and action layers."""
