# Models Package
from .blob import BlobObject

__all__ = ["BlobObject"]
