"""Service layer: note operations, search, sync and PRD validation."""
