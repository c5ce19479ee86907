"""Concrete collaborators: generation client, action executors and prompts."""
