import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session, selectinload

from mediagate import models, schemas
from mediagate.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter()
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ADMIN_ROLE = "admin"

# ───── Password Utils ─────


def hash_password(p: str): return pwd_context.hash(p)
def verify_password(p: str, h: str): return pwd_context.verify(p, h)

# ───── Token Helpers ─────


def create_access_token(data: dict, secret_key: str, algorithm: str,
                        expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="admin/login")

# ───── Admin Seed ─────


def ensure_admin(db: Session, email: str, password: str) -> models.Admin:
    admin = db.query(models.Admin).filter(models.Admin.email == email).first()
    if admin is None:
        admin = models.Admin(email=email, hashed_password=hash_password(password))
        db.add(admin)
        db.commit()
        db.refresh(admin)
        logger.info("Created admin account %s", email)
    return admin

# ───── Admin Guard ─────


def get_current_admin(
        request: Request,
        token: str = Depends(oauth2_scheme),
        db: Session = Depends(get_db)) -> models.Admin:
    settings = request.app.state.settings
    cred_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        token_data = schemas.TokenData(email=payload.get("sub"), role=payload.get("role"))
    except JWTError:
        raise cred_exc
    if token_data.email is None:
        raise cred_exc
    if token_data.role != ADMIN_ROLE:
        raise HTTPException(403, "Admin access required")

    admin = db.query(
        models.Admin).filter(
        models.Admin.email == token_data.email).first()
    if admin is None:
        raise cred_exc
    return admin

# ───── Login ─────


@router.post("/admin/login", response_model=schemas.Token)
def login(
        request: Request,
        form_data: OAuth2PasswordRequestForm = Depends(),
        db: Session = Depends(get_db)):
    settings = request.app.state.settings
    admin = db.query(
        models.Admin).filter(
        models.Admin.email == form_data.username).first()
    if not admin or not verify_password(
            form_data.password,
            admin.hashed_password):
        raise HTTPException(401, "Invalid credentials")

    access_token = create_access_token(
        data={"sub": admin.email, "role": ADMIN_ROLE},
        secret_key=settings.secret_key,
        algorithm=settings.algorithm,
        expires_delta=timedelta(minutes=settings.admin_token_expire_minutes),
    )
    return {"access_token": access_token, "token_type": "bearer"}

# ───────────── Admin User Ops ──────────


@router.get("/admin/users", response_model=list[schemas.UserOut])
def get_all_users(db: Session = Depends(get_db),
                  admin: models.Admin = Depends(get_current_admin)):
    return (
        db.query(models.User)
        .options(selectinload(models.User.tokens))
        .order_by(models.User.created_at)
        .all()
    )
