"""
Remi - Prompt Templates & Fixed Replies
========================================
Every string the model or the sender sees lives here, so wording can be
reviewed and changed without touching pipeline code.

Exports
-------
KNOWN_USER_SYSTEM_PROMPT, ANONYMOUS_SYSTEM_PROMPT, PROFILE_USAGE_NOTE,
CHANNEL_FORMAT_HINT, HISTORY_HEADER, HISTORY_USAGE_NOTE, NO_HISTORY_NOTICE,
EXCHANGE_TEMPLATE, MISSING_REPLY_PLACEHOLDER, USER_PROMPT_TEMPLATE,
APOLOGY_MESSAGE, HEALTH_MESSAGE.
"""

# ══════════════════════════════════════════════════════════════════════
#  FIXED REPLIES
# ══════════════════════════════════════════════════════════════════════
# Sent verbatim.  Upstream error details never go to the sender.

APOLOGY_MESSAGE: str = "Sorry, I encountered an error. Please try again later."

HEALTH_MESSAGE: str = "Remi WhatsApp relay is running!"


# ══════════════════════════════════════════════════════════════════════
#  SYSTEM INSTRUCTION
# ══════════════════════════════════════════════════════════════════════

KNOWN_USER_SYSTEM_PROMPT: str = (
    "You are a helpful personalized AI assistant. You talk with several different people, "
    "so keep track of who you are speaking with. You are currently speaking with {name}, "
    "who is {role}. Address them by their name and be extra friendly."
)

ANONYMOUS_SYSTEM_PROMPT: str = "You are a friendly and helpful assistant. Keep your answers concise and clear."

PROFILE_USAGE_NOTE: str = "Use this profile information only when it is relevant to the message; do not mention it otherwise."

CHANNEL_FORMAT_HINT: str = (
    "Your replies are delivered as WhatsApp messages: keep them short and conversational, "
    "use plain text with at most simple *bold* or _italic_ emphasis, and never use markdown "
    "tables, headings, or code blocks."
)


# ══════════════════════════════════════════════════════════════════════
#  MEMORY BLOCK
# ══════════════════════════════════════════════════════════════════════

HISTORY_HEADER: str = "RELEVANT PAST CONVERSATIONS (most similar first)"

HISTORY_USAGE_NOTE: str = "These are earlier exchanges with this same person. Use them to stay consistent, and ignore any that do not relate to the new message."

NO_HISTORY_NOTICE: str = "There is no relevant earlier conversation with this person. Do not claim to remember anything about them beyond what is stated here."

EXCHANGE_TEMPLATE: str = '[{index}] User: "{user_message}"\n    You: "{agent_message}"'

MISSING_REPLY_PLACEHOLDER: str = "(no reply recorded)"


# ══════════════════════════════════════════════════════════════════════
#  USER PROMPT
# ══════════════════════════════════════════════════════════════════════

USER_PROMPT_TEMPLATE: str = """{memory_block}

══════════════════════════════════════════
NEW MESSAGE
══════════════════════════════════════════
{message}"""
