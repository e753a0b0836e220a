from typing import Annotated, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from sync_api.services.auth import AuthServiceDep

bearer_scheme = HTTPBearer(auto_error=False)


def current_user(auth_service: AuthServiceDep,
                 credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)]) -> str:
    """The user of the authenticated session. Request bodies never decide whose data is written."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"})

    user_id = auth_service.user_for_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token", headers={"WWW-Authenticate": "Bearer"})
    return user_id


CurrentUserDep = Annotated[str, Depends(current_user)]
