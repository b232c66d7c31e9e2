"""SQLite persistence plumbing shared by the task repository and job queue."""
