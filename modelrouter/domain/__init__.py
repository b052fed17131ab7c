"""Model router domain layer."""
