"""Workshop session backend."""
