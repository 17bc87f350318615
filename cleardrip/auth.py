from fastapi import Header
from jose import jwt
from jose.exceptions import JOSEError

from cleardrip.config import get_settings
from cleardrip.errors import Unauthorized


def get_current_user_id(authorization: str = Header(None)) -> str:
    secret = get_settings().JWT_SECRET
    if not authorization or not secret:
        raise Unauthorized()

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise Unauthorized()
    if scheme.lower() != "bearer":
        raise Unauthorized()

    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except JOSEError:
        raise Unauthorized()

    user_id = claims.get("sub")
    if not user_id:
        raise Unauthorized()
    return user_id
