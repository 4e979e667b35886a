"""Infrastructure layer for Cohort-Sync: configuration, settings and logging."""
