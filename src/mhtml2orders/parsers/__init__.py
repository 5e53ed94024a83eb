from .registry import register
from .aliexpress import create as create_aliexpress

def bootstrap() -> None:
    # Register all site parsers here
    register(create_aliexpress())
