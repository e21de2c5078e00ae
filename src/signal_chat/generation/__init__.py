"""Language-model access: prompts, chat model factory, and the response generator."""
