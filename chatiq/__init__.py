"""ChatIQ session and conversation synchronization engine."""
