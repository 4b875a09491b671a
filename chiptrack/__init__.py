"""chiptrack: pattern-based retro music tracker engine."""
