from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm

from .deps import get_auth_manager, get_current_user
from .models import User
from .schemas import AuthOut, ChangePasswordIn, PrincipalOut, RefreshIn, SignupIn, TokensOut
from .sessions import AuthSessionManager

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/signup", response_model=AuthOut, status_code=201)
def signup(payload: SignupIn, auth: AuthSessionManager = Depends(get_auth_manager)):
    return auth.signup(payload.name, payload.email, payload.password)

@router.post("/login", response_model=AuthOut)
def login(form: OAuth2PasswordRequestForm = Depends(), auth: AuthSessionManager = Depends(get_auth_manager)):
    return auth.login(form.username, form.password)

@router.post("/refresh", response_model=TokensOut)
def refresh(payload: RefreshIn, auth: AuthSessionManager = Depends(get_auth_manager)):
    return auth.refresh(payload.refresh_token)

@router.post("/logout", status_code=204)
def logout(user: User = Depends(get_current_user), auth: AuthSessionManager = Depends(get_auth_manager)):
    auth.logout(user.id)

@router.get("/me", response_model=PrincipalOut)
def me(user: User = Depends(get_current_user)):
    return user

@router.post("/change-password", status_code=204)
def change_password(
    payload: ChangePasswordIn,
    user: User = Depends(get_current_user),
    auth: AuthSessionManager = Depends(get_auth_manager),
):
    auth.change_password(user.id, payload.current_password, payload.new_password)
