from fastapi import Header, HTTPException


async def current_user(x_user_id: str = Header(default="")) -> str:
    """Caller identity; authentication happens in front of this service"""
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(401, "Authentication required (X-User-Id header)")
    return user_id
