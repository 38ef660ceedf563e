"""Background job queue: storage, dispatch and executors."""
