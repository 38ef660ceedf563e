"""Multi-agent article pipeline."""
