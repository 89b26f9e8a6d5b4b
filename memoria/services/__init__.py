"""Core business logic: chunking, embedding access, intake, hybrid retrieval and the assistant."""
