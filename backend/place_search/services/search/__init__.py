"""Search orchestration: language model -> parser -> places provider."""
