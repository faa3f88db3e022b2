"""Reference person management."""
