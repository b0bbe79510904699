"""Local task store, mutation engine and drag controller."""
