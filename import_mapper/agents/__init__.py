"""DSPy agents used by the paid matching strategy."""
