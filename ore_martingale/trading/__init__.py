"""Transaction execution."""
