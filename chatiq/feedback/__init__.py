"""Feedback capture and periodic export."""
