"""User accounts: local registration/login and Google sign-in.

Both credential paths end in the same place, a user document that
``security.create_token`` can issue a token for.
"""

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import create_document, utcnow
from errors import BusinessRuleViolation
from logging_config import get_logger
from request_schemas import GoogleUserInfo, RegisterBody
from schemas import Role, User
from security import hash_password, verify_password

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


def _user_document(user: User) -> dict:
    # Optional identity fields are left out entirely so sparse unique indexes ignore them
    doc = user.model_dump()
    for key in ("password_hash", "google_id"):
        if doc.get(key) is None:
            doc.pop(key, None)
    return doc


def register_user(db: Database, body: RegisterBody, settings: Settings) -> dict:
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        logger.info("registration_rejected", email=email, reason="email_exists")
        raise BusinessRuleViolation("A user with this email already exists", code="EMAIL_EXISTS")

    user = User(
        name=body.name.strip(),
        email=email,
        password_hash=hash_password(body.password, rounds=settings.bcrypt_rounds),
    )
    try:
        user_id = create_document(db, "user", _user_document(user))
    except DuplicateKeyError:
        raise BusinessRuleViolation("A user with this email already exists", code="EMAIL_EXISTS")

    logger.info("user_registered", user_id=user_id)
    return db["user"].find_one({"email": email})


def authenticate(db: Database, email: str, password: str) -> dict:
    """Return the user for valid credentials.

    Unknown email and wrong password carry different codes for the logs and
    the client, but the same message.
    """
    user = db["user"].find_one({"email": email.lower()})
    if not user:
        logger.info("login_failed", email=email.lower(), reason="user_not_found")
        raise BusinessRuleViolation(INVALID_CREDENTIALS, code="USER_NOT_FOUND")
    if not verify_password(password, user.get("password_hash")):
        logger.info("login_failed", user_id=str(user["_id"]), reason="invalid_password")
        raise BusinessRuleViolation(INVALID_CREDENTIALS, code="INVALID_PASSWORD")
    if not user.get("is_active", True):
        raise BusinessRuleViolation("Account is disabled", code="ACCOUNT_DISABLED")
    return user


def login_with_google(db: Database, info: GoogleUserInfo) -> dict:
    """Find or create the user for an already verified Google identity."""
    email = info.email.lower()
    user = db["user"].find_one({"$or": [{"email": email}, {"google_id": info.sub}]})

    if not user:
        new_user = User(
            name=info.name or email.split("@")[0],
            email=email,
            google_id=info.sub,
            profile_picture=info.picture or "",
            role=Role.USER,
            is_email_verified=True,
        )
        user_id = create_document(db, "user", _user_document(new_user))
        logger.info("user_registered", user_id=user_id, provider="google")
        return db["user"].find_one({"email": email})

    if not user.get("is_active", True):
        logger.info("login_failed", user_id=str(user["_id"]), reason="account_disabled", provider="google")
        raise BusinessRuleViolation("Account is disabled", code="ACCOUNT_DISABLED")

    updates = {}
    if not user.get("google_id"):
        updates["google_id"] = info.sub
    if not user.get("profile_picture") and info.picture:
        updates["profile_picture"] = info.picture
    if not user.get("is_email_verified"):
        updates["is_email_verified"] = True
    if updates:
        updates["updated_at"] = utcnow()
        db["user"].update_one({"_id": user["_id"]}, {"$set": updates})
        user.update(updates)
        logger.info("google_identity_linked", user_id=str(user["_id"]), fields=sorted(updates))
    return user


def ensure_admin_user(db: Database, settings: Settings) -> bool:
    if not settings.admin_email or not settings.admin_password:
        return False
    if db["user"].count_documents({"role": Role.ADMIN.value}) > 0:
        return False
    email = settings.admin_email.lower()
    if db["user"].find_one({"email": email}):
        db["user"].update_one({"email": email}, {"$set": {"role": Role.ADMIN.value, "updated_at": utcnow()}})
        logger.info("admin_role_granted", email=email)
        return True
    admin = User(
        name="Admin",
        email=email,
        password_hash=hash_password(settings.admin_password, rounds=settings.bcrypt_rounds),
        role=Role.ADMIN,
        is_email_verified=True,
    )
    create_document(db, "user", _user_document(admin))
    logger.info("admin_user_created", email=admin.email)
    return True
