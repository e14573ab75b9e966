"""Constants and default values for Inkwell."""

# Default model configuration
DEFAULT_MODEL = "anthropic:claude-sonnet-4-5"

DEFAULT_SYSTEM_PROMPT = (
    "You are a thoughtful writing assistant. Help the user draft, revise and "
    "improve their writing. Keep the user's voice and intent."
)

# Conversation defaults
DEFAULT_HISTORY_LIMIT = 20  # turns kept in each request, system turns excluded
DEFAULT_CONTEXT_PLACEMENT = "append"
CONTEXT_PLACEMENTS = ("append", "after_system")
DEFAULT_DATA_DIR = ".inkwell"
API_KEY_VENDORS = ("openai", "anthropic", "gemini", "deepseek")

# Turn text shown while a generation is in flight, and its fallbacks
PLACEHOLDER_TEXT = "Generating..."
INTERRUPTED_TEXT = "Generation interrupted"
GENERATION_FAILED_PREFIX = "Generation failed"
AGENT_FAILED_PREFIX = "Agent workflow failed"

# Marker for temporary context inserted as its own message
CONTEXT_MESSAGE_HEADER = "[Context]"

# History index display limits
TITLE_MAX_CHARS = 30
PREVIEW_MAX_CHARS = 50
DEFAULT_TITLE = "New conversation"
EMPTY_PREVIEW = "Empty conversation"

# HTTP
DEFAULT_HTTP_TIMEOUT = 60.0  # seconds

# Agent pipeline
MAIN_TASK_ID = "main-generation"
DEFAULT_MIN_INPUT_LENGTH = 5

# Model descriptors: "<vendor>:<name>" -> provider settings
SUPPORTED_MODELS = {
    # Claude Sonnet 4.5 - default writing model
    "anthropic:claude-sonnet-4-5": {
        "type": "anthropic",
        "name": "claude-sonnet-4-5-20250929",
        "max_output_tokens": 8192,
        "key_env": "ANTHROPIC_API_KEY",
    },
    # Claude Haiku 4.5 - fast, good for pipeline helper tasks
    "anthropic:claude-haiku-4-5": {
        "type": "anthropic",
        "name": "claude-haiku-4-5-20251001",
        "max_output_tokens": 8192,
        "key_env": "ANTHROPIC_API_KEY",
    },
    "openai:gpt-4o": {
        "type": "openai",
        "name": "gpt-4o",
        "base_url": "https://api.openai.com/v1/chat/completions",
        "max_output_tokens": 4096,
        "key_env": "OPENAI_API_KEY",
    },
    "openai:gpt-4o-mini": {
        "type": "openai",
        "name": "gpt-4o-mini",
        "base_url": "https://api.openai.com/v1/chat/completions",
        "max_output_tokens": 4096,
        "key_env": "OPENAI_API_KEY",
    },
    # DeepSeek streams reasoning_content alongside content
    "deepseek:deepseek-reasoner": {
        "type": "openai",
        "name": "deepseek-reasoner",
        "base_url": "https://api.deepseek.com/chat/completions",
        "max_output_tokens": 8192,
        "key_env": "DEEPSEEK_API_KEY",
    },
    "deepseek:deepseek-chat": {
        "type": "openai",
        "name": "deepseek-chat",
        "base_url": "https://api.deepseek.com/chat/completions",
        "max_output_tokens": 8192,
        "key_env": "DEEPSEEK_API_KEY",
    },
    "gemini:gemini-2.5-flash": {
        "type": "gemini",
        "name": "gemini-2.5-flash",
        "base_url": "https://generativelanguage.googleapis.com/v1beta/models",
        "max_output_tokens": 8192,
        "key_env": "GEMINI_API_KEY",
    },
}
