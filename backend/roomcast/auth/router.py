"""Auth router for account registration and login.

Endpoints:
    POST /register - Create an account
    POST /login    - Exchange credentials for a signed bearer token

The token returned by /login must be presented on every realtime connection
(see roomcast.chat.router).

Both handlers are plain functions: password hashing and the DuckDB lookup
block, so FastAPI runs them in its threadpool.
"""
import logging

from fastapi import APIRouter, HTTPException, status

from .schemas import CredentialsRequest, LoginResponse, MessageResponse
from .service import InvalidCredentials, UserStore, UsernameTaken, get_token_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=MessageResponse)
def register(request: CredentialsRequest) -> MessageResponse:
    """Register a new account.

    Returns 400 when a field is missing and 409 when the username is taken.
    """
    if not request.is_complete():
        raise HTTPException(status_code=400, detail="Username and password are required")

    username = request.username.strip()
    try:
        UserStore.get_instance().create_user(username, request.password)
    except UsernameTaken:
        raise HTTPException(status_code=409, detail="Username already exists")
    except Exception as e:
        logger.error(f"Registration error for {username}: {e}")
        raise HTTPException(status_code=500, detail="Server error during registration")

    return MessageResponse(message="User registered successfully")


@router.post("/login", response_model=LoginResponse)
def login(request: CredentialsRequest) -> LoginResponse:
    """Verify credentials and issue a signed, time-limited token."""
    if not request.is_complete():
        raise HTTPException(status_code=400, detail="Username and password are required")

    username = request.username.strip()
    try:
        UserStore.get_instance().authenticate(username, request.password)
    except InvalidCredentials:
        logger.info("Rejected login for %s", username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    except Exception as e:
        logger.error(f"Login error for {username}: {e}")
        raise HTTPException(status_code=500, detail="Server error during login")

    token = get_token_service().issue(username)
    return LoginResponse(message="Login successful", token=token)
