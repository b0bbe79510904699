"""Remote store contract and adapters."""
