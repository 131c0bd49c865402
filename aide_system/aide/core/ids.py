import secrets
import uuid

def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"

def new_session_key() -> str:
    return secrets.token_urlsafe(12)[:16]

"""
ID generation utilities & it provides:
- Task, log, instruction and embedding IDs
- Chat session keys handed out to clients

The main purpose:
Consistent identifier creation across system.
"""
