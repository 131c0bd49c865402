"""
Application configuration loader and it handles:
- Environment variables
- Database configuration
- AI collaborator configuration
- Retrieval, chat and proactive tuning
- Job concurrency and sync cadence

And, the main purpose:
Central place for system configuration.
"""


from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./aide.db"
    DB_ECHO: bool = False
    DB_BUSY_TIMEOUT_SECONDS: float = 15.0
    LOG_LEVEL: str = "INFO"

    # AI collaborators
    LLM_PROVIDER: str = "openai"  # openai (any OpenAI-compatible API) | mock (for no-key dev)
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "https://api.openai.com/v1"
    LLM_MODEL: str = "gpt-4o-mini"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIM: int = 1536
    LLM_TIMEOUT_SECONDS: float = 40.0
    LLM_MAX_ATTEMPTS: int = 3
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 1000

    # Retrieval
    RAG_TOP_K: int = 5
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 100
    CONTEXT_SNIPPET_CHARS: int = 500

    # Chat
    CHAT_HISTORY_LIMIT: int = 10
    SESSION_TITLE_MAX: int = 50

    # Proactive matching
    RELEVANCE_THRESHOLD: int = 0

    # Jobs
    AI_CONCURRENCY: int = 4
    SYNC_CONCURRENCY: int = 8
    ONLINE_SYNC_SECONDS: int = 5
    OFFLINE_SYNC_SECONDS: int = 1800

    # External services reached by tools
    GMAIL_BASE_URL: str = "http://localhost:8081/gmail"
    CALENDAR_BASE_URL: str = "http://localhost:8081/calendar"
    CRM_BASE_URL: str = "http://localhost:8081/crm"
    SERVICE_TIMEOUT_SECONDS: float = 30.0

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
