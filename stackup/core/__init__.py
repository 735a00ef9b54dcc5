"""Core workflow: configuration, stages, materialization and orchestration."""
