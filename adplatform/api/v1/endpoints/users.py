"""
User signup and profile endpoints.
"""
import secrets
import string
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError

from adplatform.api.deps import get_current_user, get_optional_user, get_repository, get_request_id
from adplatform.models.db import ClientAccount, User
from adplatform.models.db.enums import UserRole
from adplatform.models.schemas.users import UserCreate, UserCreated, UserRead, UserUpdate
from adplatform.services.repository import Repository
from adplatform.utils import get_logger, log_business_event, log_performance
from adplatform.utils.errors import AppError, AuthorizationError, ConflictError

router = APIRouter()
logger = get_logger(__name__)


def generate_api_key() -> str:
    """Generate a secure API key."""
    alphabet = string.ascii_letters + string.digits
    return "adp_" + "".join(secrets.choice(alphabet) for _ in range(32))


@router.post(
    "/",
    response_model=UserCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Sign up",
    description="Register a user. CLIENT signups are open and get a client account; other roles need an admin caller.",
)
def create_user(
    user_data: UserCreate,
    caller: Optional[User] = Depends(get_optional_user),
    repo: Repository = Depends(get_repository),
    request_id: str = Depends(get_request_id),
) -> UserCreated:
    start_time = time.time()
    logger.info("User creation started", user_email=user_data.email, user_role=user_data.role.value, request_id=request_id)

    if user_data.role != UserRole.CLIENT and (caller is None or caller.role != UserRole.ADMIN):
        raise AuthorizationError("Only administrators can create non-client users")

    try:
        user = User(
            email=user_data.email,
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            api_key=generate_api_key(),
            role=user_data.role,
        )
        repo.add(user)
        repo.flush()
        if user.role == UserRole.CLIENT:
            repo.add(ClientAccount(user_id=user.id))
        repo.commit()
    except IntegrityError:
        repo.rollback()
        logger.warning("User creation failed: duplicate email", email=user_data.email, request_id=request_id)
        raise ConflictError(f"User with email '{user_data.email}' already exists")
    except (HTTPException, AppError):
        raise
    except Exception as e:
        repo.rollback()
        logger.error("User creation failed with unexpected error", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error during user creation")

    log_business_event(
        event_type="user_created",
        details={"user_email": user.email, "user_role": user.role.value, "api_key_generated": True},
        user_id=user.id,
        request_id=request_id,
    )
    log_performance("create_user", (time.time() - start_time) * 1000, {"user_id": user.id})
    return UserCreated.model_validate(user)


@router.get("/me", response_model=UserRead, summary="Current user")
def read_me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)


@router.patch("/me", response_model=UserRead, summary="Update profile")
def update_me(
    update_data: UserUpdate,
    current_user: User = Depends(get_current_user),
    repo: Repository = Depends(get_repository),
) -> UserRead:
    changes = update_data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(current_user, field, value)
    repo.commit()
    logger.info("User profile updated", user_id=current_user.id, fields=sorted(changes))
    return UserRead.model_validate(current_user)
