"""Authentication: bcrypt password hashes, JWT bearer tokens and role checks."""
from datetime import datetime, timedelta, timezone

import structlog
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from .models import Employee, User, UserRole
from .store import Store, get_store

log = structlog.get_logger()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)

FINANCE_ROLES = (UserRole.ADMIN, UserRole.MANAGER)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(user: User, expires_delta: timedelta | None = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    claims = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "employee_id": user.employee_id,
        "exp": expire,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def create_user(
    session: AsyncSession,
    email: str,
    password: str,
    role: UserRole = UserRole.RECEPTIONIST,
    employee_id: int | None = None,
) -> User:
    if await session.scalar(select(User).where(User.email == email)) is not None:
        raise ConflictError("A user with this email already exists")
    if employee_id is not None:
        if await session.get(Employee, employee_id) is None:
            raise NotFoundError("Employee", employee_id)
        if await session.scalar(select(User).where(User.employee_id == employee_id)) is not None:
            raise ConflictError("This employee already has a user account")

    user = User(email=email, password_hash=get_password_hash(password), role=role,
                employee_id=employee_id, is_active=True)
    session.add(user)
    await session.flush()
    await session.refresh(user)
    log.info("user_created", user_id=user.id, role=role.value)
    return user


async def has_users(session: AsyncSession) -> bool:
    return bool(await session.scalar(select(func.count(User.id))))


async def lock_users(session: AsyncSession) -> None:
    """Hold the users table until commit so registrations run one at a time."""
    if session.get_bind().dialect.name == "postgresql":
        await session.execute(text("LOCK TABLE users IN SHARE ROW EXCLUSIVE MODE"))


async def register_user(
    session: AsyncSession,
    token: str | None,
    email: str,
    password: str,
    role: UserRole = UserRole.RECEPTIONIST,
    employee_id: int | None = None,
) -> User:
    """Create an account. The first account on an empty system is an admin and needs no token."""
    await lock_users(session)
    if await has_users(session):
        actor = await user_from_token(session, token)
        if actor.role != UserRole.ADMIN:
            raise ForbiddenError("Only administrators can register users")
    else:
        role = UserRole.ADMIN
    return await create_user(session, email, password, role, employee_id)


async def authenticate(session: AsyncSession, email: str, password: str) -> tuple[User, str]:
    user = await session.scalar(select(User).where(User.email == email))
    if user is None or not verify_password(password, user.password_hash):
        log.info("login_failed", email=email)
        raise UnauthorizedError("Invalid email or password")
    if not user.is_active:
        raise UnauthorizedError("Account is deactivated")
    log.info("login", user_id=user.id)
    return user, create_access_token(user)


async def change_password(session: AsyncSession, user_id: int, current_password: str, new_password: str) -> None:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    if not verify_password(current_password, user.password_hash):
        raise UnauthorizedError("Current password is incorrect")
    user.password_hash = get_password_hash(new_password)
    await session.flush()


async def user_from_token(session: AsyncSession, token: str | None) -> User:
    if not token:
        raise UnauthorizedError()
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise UnauthorizedError("Invalid or expired token")

    user = await session.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthorizedError("User no longer exists or is deactivated")
    return user


async def get_current_user(token: str | None = Depends(oauth2_scheme), store: Store = Depends(get_store)) -> User:
    async with store.transaction() as session:
        return await user_from_token(session, token)


def require_roles(*roles: UserRole):
    async def checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise ForbiddenError()
        return user
    return checker
