from .config import settings, get_settings, Settings
from .clock import Clock
from .database import Base

__all__ = ["settings", "get_settings", "Settings", "Clock", "Base"]
