"""Demo scenarios for exercising a live intake."""
