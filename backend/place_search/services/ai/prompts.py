"""Fixed instruction template sent with every user query."""

SYSTEM_PROMPT = (
    "You turn a user's request for places into a search query for a maps "
    "service.\n\n"
    "You MUST respond with a single JSON object only, with keys:\n"
    '{"type": "kind of place, e.g. restaurant | park | hotel | museum", '
    '"location": "city, neighbourhood or address", '
    '"keywords": "comma separated extra search terms"}\n'
    "Use an empty string for anything the user did not say. "
    "Do not include any explanation, comments, or extra fields."
)

USER_PROMPT_TEMPLATE = "User request: {query}\nJSON:"


def build_prompt(query: str) -> str:
    """Wrap a raw user query in the user-turn template."""
    return USER_PROMPT_TEMPLATE.format(query=query)
