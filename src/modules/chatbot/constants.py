"""Chatbot constants: validation limits, fallback reply, security signatures."""

# Message / context limits
MAX_MESSAGE_LENGTH = 1000
MAX_CONTEXT_BYTES = 5000
MAX_CONTEXT_KEY_LENGTH = 50
MAX_CONTEXT_VALUE_LENGTH = 500

# Placeholder for missing request metadata
UNKNOWN = "unknown"

# Substrings of user agents treated as automated clients (case-insensitive)
BOT_USER_AGENT_PATTERNS = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "curl",
    "wget",
    "python",
    "java",
    "perl",
)

# NLU fallback
FALLBACK_INTENT = "fallback"
FALLBACK_REPLY = "I'm sorry, I couldn't understand that. Please try again."

# Language handling
DEFAULT_LANGUAGE = "en"

# Admin listing
DEFAULT_ACTIVE_SESSION_LIST_LIMIT = 100
