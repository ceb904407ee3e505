"""Entry points that put the agent in front of a user."""
