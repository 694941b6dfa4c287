"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# Document intake: allowed extensions and how many files one selection may carry
ALLOWED_EXTENSIONS: frozenset[str] = frozenset({".pdf", ".docx", ".csv", ".pptx", ".txt", ".md"})
MAX_UPLOAD_FILES: int = 10

# First system turn of every session
WELCOME_MESSAGE: str = (
    "Welcome to the Agentic RAG Chatbot! Upload documents and start asking questions. "
    "The system uses three intelligent agents to process your queries."
)

# Chunking defaults for the ingestion stage
CHUNK_SIZE: int = 500
CHUNK_OVERLAP: int = 50

# Retrieval stage: max chunks handed to the response stage
RETRIEVAL_TOP_K: int = 3

# OpenAI (response LLM). When set, the response stage uses OpenAI instead of Hugging Face.
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)

# Hugging Face router chat completions (fallback LLM)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()
HF_CHAT_URL: str = "https://router.huggingface.co/v1/chat/completions"
HF_LLM_MODEL: str = (
    os.getenv("HF_LLM_MODEL", "meta-llama/Llama-3.2-3B-Instruct").strip()
    or "meta-llama/Llama-3.2-3B-Instruct"
)

# API timeouts (seconds)
LLM_API_TIMEOUT: float = float(os.getenv("LLM_API_TIMEOUT", "60").strip() or 60)
LLM_MAX_TOKENS: int = 512

# Server-Sent Events: seconds of silence before a keepalive comment is sent
EVENT_STREAM_KEEPALIVE: float = 15.0
