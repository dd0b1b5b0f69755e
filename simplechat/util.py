from __future__ import annotations

import os

from .constants import D_LOGIN, LOGIN_ID_MAX_CHARS

# Characters that would break the one-line "<id>: <text>" display format.
_FORBIDDEN_IN_ID = frozenset("\r\n\x00")


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def normalize_login_id(value) -> str | None:
    """Clean up a candidate login id, or return None if it is unusable.

    Any ``#login`` text typed along with the id is dropped, so ``#login alice``
    and ``alice`` end up the same.
    """
    if not isinstance(value, str):
        return None

    login_id = value.replace(D_LOGIN, "").strip()
    if not login_id or len(login_id) > LOGIN_ID_MAX_CHARS:
        return None
    if any(ch in _FORBIDDEN_IN_ID for ch in login_id):
        return None

    # Lone surrogates cannot go on the wire.
    try:
        login_id.encode("utf-8")
    except UnicodeEncodeError:
        return None

    return login_id
