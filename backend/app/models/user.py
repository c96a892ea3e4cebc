from app.utils.time import now_iso, parse_iso


def sanitize_user(user: dict) -> dict:
    """Public view of a user record (no password hash)"""
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "createdAt": user["createdAt"],
        "lastLoginAt": user.get("lastLoginAt"),
    }


def normalize_users(users) -> list:
    normalized = []
    for user in users:
        if not isinstance(user, dict):
            continue
        if not isinstance(user.get("id"), str) or not isinstance(user.get("email"), str):
            continue
        normalized.append({
            "id": user["id"],
            "email": user["email"].lower(),
            "name": str(user.get("name") or "User"),
            "passwordHash": str(user.get("passwordHash") or ""),
            "createdAt": str(user.get("createdAt") or now_iso()),
            "lastLoginAt": str(user["lastLoginAt"]) if user.get("lastLoginAt") else None,
        })
    return normalized


def normalize_sessions(sessions, users: list, now) -> list:
    """Drop malformed or expired sessions and sessions whose user no longer exists"""
    user_ids = {user["id"] for user in users}
    normalized = []
    for session in sessions:
        if not isinstance(session, dict):
            continue

        expires_at = parse_iso(session.get("expiresAt"))
        if expires_at is None or expires_at <= now:
            continue

        if session.get("userId") not in user_ids:
            continue

        if not session.get("id") or not session.get("tokenHash"):
            continue

        normalized.append({
            "id": str(session["id"]),
            "userId": str(session["userId"]),
            "tokenHash": str(session["tokenHash"]),
            "createdAt": str(session.get("createdAt") or now_iso()),
            "expiresAt": str(session["expiresAt"]),
        })
    return normalized
