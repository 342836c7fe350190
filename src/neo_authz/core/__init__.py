"""Core building blocks shared across neo-authz features."""
