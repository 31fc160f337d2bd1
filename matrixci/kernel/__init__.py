"""matrixci engine: domain types, ports, pipeline building and orchestration."""
