"""Data models for chaos notes and PRD stories."""
