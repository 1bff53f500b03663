"""doconvo RAG pipeline: providers, retrieval, merging, prompts, chat engine."""
