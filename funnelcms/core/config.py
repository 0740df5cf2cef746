"""
Configuration management for FunnelCMS
"""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration"""

    # Supabase
    SUPABASE_URL: str = os.getenv('SUPABASE_URL', '')
    SUPABASE_SERVICE_KEY: str = os.getenv('SUPABASE_SERVICE_KEY', '')

    # Environment: 'development' shows draft content, 'production' only published
    APP_ENV: str = os.getenv('APP_ENV', 'production')

    # OpenAI (embeddings + chat)
    OPENAI_API_KEY: str = os.getenv('OPENAI_API_KEY', '')
    EMBEDDING_MODEL: str = os.getenv('EMBEDDING_MODEL', 'text-embedding-3-small')
    CHAT_MODEL: str = os.getenv('CHAT_MODEL', 'gpt-4o-mini')
    CHAT_TEMPERATURE: float = float(os.getenv('CHAT_TEMPERATURE', '0.7'))
    CHAT_MAX_TOKENS: int = int(os.getenv('CHAT_MAX_TOKENS', '2000'))

    # Retrieval
    MATCH_THRESHOLD: float = float(os.getenv('MATCH_THRESHOLD', '0.5'))
    CHUNK_SIZE: int = int(os.getenv('CHUNK_SIZE', '500'))  # words
    CHUNK_OVERLAP: int = int(os.getenv('CHUNK_OVERLAP', '50'))  # words

    # API
    FUNNELCMS_API_KEY: str = os.getenv('FUNNELCMS_API_KEY', '')
    RUN_CALLBACK_SECRET: str = os.getenv('RUN_CALLBACK_SECRET', '')
    CORS_ORIGINS: str = os.getenv('CORS_ORIGINS', '*')

    # Workflow webhooks
    WEBHOOK_TIMEOUT_SECONDS: float = float(os.getenv('WEBHOOK_TIMEOUT_SECONDS', '30'))
    WEBHOOK_MAX_ATTEMPTS: int = int(os.getenv('WEBHOOK_MAX_ATTEMPTS', '3'))

    # File storage (CDN pull zone serving uploaded documents)
    STORAGE_PULL_ZONE_URL: str = os.getenv('BUNNY_PULL_ZONE_URL', '')
    DOWNLOAD_TIMEOUT_SECONDS: float = float(os.getenv('DOWNLOAD_TIMEOUT_SECONDS', '300'))

    # Cache
    CACHE_TTL_SECONDS: int = int(os.getenv('CACHE_TTL_SECONDS', '3600'))

    # Funnel templates
    FUNNEL_TEMPLATE_DIR: str = os.getenv(
        'FUNNEL_TEMPLATE_DIR',
        str(Path(__file__).resolve().parent.parent / 'funnels')
    )

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration"""
        required = {
            'SUPABASE_URL': cls.SUPABASE_URL,
            'SUPABASE_SERVICE_KEY': cls.SUPABASE_SERVICE_KEY,
        }

        missing = [k for k, v in required.items() if not v]

        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        return True

    @classmethod
    def get(cls, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get configuration value"""
        return getattr(cls, key, default)

    @classmethod
    def is_development(cls) -> bool:
        """True when draft content should be visible on public pages."""
        return cls.APP_ENV.lower() == 'development'
