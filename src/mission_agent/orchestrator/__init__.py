"""Mission orchestration: decomposition, routing, execution and validation."""
