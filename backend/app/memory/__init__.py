"""Three-tier assistant memory: personal, project and domain."""
