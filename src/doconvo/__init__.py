"""doconvo: converse with your documents through retrieval-augmented generation."""
