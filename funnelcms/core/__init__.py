"""
Core module - Database, configuration, caching, and data models
"""

from .database import get_supabase_client
from .config import Config
from .cache import cache, revalidate_tag

__all__ = ['get_supabase_client', 'Config', 'cache', 'revalidate_tag']
