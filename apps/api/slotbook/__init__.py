"""Slot reservation and WhatsApp notification service."""
