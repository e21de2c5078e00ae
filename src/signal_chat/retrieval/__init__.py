"""Relevance search, reranking, and context assembly."""
