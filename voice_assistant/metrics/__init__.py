"""Turn metrics."""
