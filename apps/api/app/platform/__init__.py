from app.platform.security import Actor, AppError, BaseRepository, ResourceOwner, Role

__all__ = [
    "Actor",
    "AppError",
    "BaseRepository",
    "ResourceOwner",
    "Role",
]
