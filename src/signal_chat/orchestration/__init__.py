"""Turn orchestration: routing, dispatch, generation, and fallbacks."""
