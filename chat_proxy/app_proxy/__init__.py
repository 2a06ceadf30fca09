from .route import ApiProxy

__all__ = ["ApiProxy"]
