"""Session state machine, subscriptions, and the conversation window."""
