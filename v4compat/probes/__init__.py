"""Feature probes and the primitives they exercise."""
