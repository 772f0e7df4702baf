"""ferry: an interactive, multi-provider LLM agent with file-editing tools."""
