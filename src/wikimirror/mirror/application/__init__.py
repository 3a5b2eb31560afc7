"""Use cases and workflows for mirroring."""
