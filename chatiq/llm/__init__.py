"""Completion requests: context assembly, backends, and the completion client."""
