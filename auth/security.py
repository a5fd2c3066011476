# auth/security.py
import os, re, hashlib, secrets, string, uuid, datetime as dt
from jose import jwt
from passlib.context import CryptContext

from utils.date_utils import utcnow

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
JWT_ALG = "HS256"
JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
ACCESS_MIN = int(os.getenv("ACCESS_MIN", str(7 * 24 * 60)))
RESET_TOKEN_MINUTES = int(os.getenv("RESET_TOKEN_MINUTES", "60"))

PASSWORD_MIN = 8
PASSWORD_MAX = 128
SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'
_SPECIAL_RE = re.compile(r'[!@#$%^&*(),.?":{}|<>]')


def hash_password(p): return pwd_ctx.hash(p)


def verify_password(p, h):
    try:
        return pwd_ctx.verify(p, h)
    except (ValueError, TypeError):
        return False


def password_policy_errors(p: str) -> list[str]:
    problems = []
    if len(p) < PASSWORD_MIN:
        problems.append(f"Password must be at least {PASSWORD_MIN} characters")
    if len(p) > PASSWORD_MAX:
        problems.append(f"Password cannot exceed {PASSWORD_MAX} characters")
    if not _SPECIAL_RE.search(p):
        problems.append(f"Password must contain at least one special character ({SPECIAL_CHARS})")
    return problems


def create_access_token(sub: str, role: str, department: str | None, force_password_change: bool,
                        version: int):
    now = utcnow()
    claims = {
        "sub": sub,
        "role": role,
        "dept": department,
        "fpc": bool(force_password_change),
        "ver": version,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + dt.timedelta(minutes=ACCESS_MIN),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALG)


def decode_access_token(token: str):
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])


def make_reset_token():
    raw = secrets.token_urlsafe(32)  # emailed to the user
    return raw, digest_token(raw)  # only the digest is stored


def digest_token(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()


def reset_exp():
    return utcnow() + dt.timedelta(minutes=RESET_TOKEN_MINUTES)


def generate_temporary_password(length: int = 12) -> str:
    upper, lower, digits, special = string.ascii_uppercase, string.ascii_lowercase, string.digits, "!@#$%^&*"
    chars = [secrets.choice(upper), secrets.choice(lower), secrets.choice(digits), secrets.choice(special)]
    pool = upper + lower + digits + special
    chars += [secrets.choice(pool) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)
