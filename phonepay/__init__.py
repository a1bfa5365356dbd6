"""Telephone payment IVR for the bookstore back office."""
