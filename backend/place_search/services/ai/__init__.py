"""
Language model layer.

- llm_client: HTTP client for the local model server
- prompts: fixed instruction template
- schema / parser: turn untrusted model text into a SearchIntent

Nothing in this package talks to the places provider.
"""
