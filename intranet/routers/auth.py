from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
import logging
from intranet.core.exceptions import AuthenticationError
from intranet.core.limiter import limiter
from intranet.database import get_db
from intranet.models.user import User
from intranet.services import auth as auth_service
from intranet.schemas.auth import LoginRequest, Token, UserResponse
from intranet.routers.auth_deps import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["auth"]
)

@router.post("/login", response_model=Token)
@limiter.limit("10/minute")
def login(request: Request, login_data: LoginRequest, db: Session = Depends(get_db)):
    # JSON body instead of form-data for frontend compatibility
    user = db.query(User).filter(User.email == login_data.email).first()
    if not user or not auth_service.verify_password(login_data.password, user.hashed_password):
        logger.warning("Failed login", extra={"email": login_data.email})
        raise AuthenticationError("Incorrect email or password")
    if not user.is_active:
        raise HTTPException(status_code=400, detail="User is inactive")

    token_data = {
        "sub": user.email,
        "role": user.role.value,
        "user_id": user.id,
        "emp_id": user.emp_id,
    }
    access_token = auth_service.create_access_token(data=token_data)
    logger.info("Login succeeded", extra={"user_id": user.id})

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": {
            "id": user.id,
            "emp_id": user.emp_id,
            "email": user.email,
            "name": user.full_name,
            "role": user.role.value,
        }
    }

@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)
