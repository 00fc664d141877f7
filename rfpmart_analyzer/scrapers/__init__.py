"""Site session, discovery and document acquisition."""
