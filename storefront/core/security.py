from datetime import timedelta
from typing import Optional, Dict, Any, Union
from jose import jwt, JWTError
from storefront.core.config import settings
from storefront.database import utcnow

ALGORITHM = settings.ALGORITHM

def create_access_token(subject: Union[str, int], expires_delta: Optional[timedelta] = None) -> str:
    """
    Access токен пользователя. В продакшене токены выдает сервис авторизации,
    здесь функция нужна для скриптов и тестов.
    """
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(subject), "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)

def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Payload токена или None, если подпись/срок/тип неверны"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None

    if payload.get("sub") is None or payload.get("type") != "access":
        return None
    return payload
