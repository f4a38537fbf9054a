from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

def hash_code(code: str) -> str:
    return pwd_context.hash(code)

def verify_code(code: str, code_hash: str) -> bool:
    return pwd_context.verify(code, code_hash)
