from uuid import UUID

from fastapi import Header, HTTPException

from app.core.jwt_auth import decode_token


async def get_owner_id(authorization: str = Header(default="")) -> UUID:
    """Resolve the calling user's id from the bearer token. Ownership checks trust this value."""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Unauthorized: missing bearer token")
    claims = decode_token(token.strip())
    if not claims or not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Unauthorized: invalid or expired token")
    try:
        return UUID(str(claims["sub"]))
    except ValueError:
        raise HTTPException(status_code=401, detail="Unauthorized: malformed subject claim") from None
