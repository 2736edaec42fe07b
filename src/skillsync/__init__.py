"""SkillSync: local-first skill registry sync and semantic search."""

__version__ = "0.1.0"
