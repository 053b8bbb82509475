"""Infrastructure layer — storage, retries, bulk jobs, report sinks."""
