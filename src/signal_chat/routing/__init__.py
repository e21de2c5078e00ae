"""Intent routing: decides per message between knowledge, a tool, or a direct answer."""
