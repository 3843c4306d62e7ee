"""Domain models: tokens, webtasks, call descriptors and analysis results."""
