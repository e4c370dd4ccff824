"""VM identity generation: names, passwords and MAC addresses.

None of the generators below are globally unique. Callers that care pass a
registry (existing VM directories, MACs recorded by other VMs) to the
``generate_unique_*`` helpers, which retry a bounded number of times.
"""

from __future__ import annotations

import random
import re
import secrets
import string
import time
from typing import Callable, Collection, Optional

from v4m.constants import MAC_ATTEMPTS, MAC_PREFIX, NAME_ADJECTIVES, NAME_ATTEMPTS, NAME_NOUNS
from v4m.exceptions import ExhaustedAttempts, ManagerError
from v4m.utils import log

PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_name(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    adjective = rng.choice(NAME_ADJECTIVES)
    noun = rng.choice(NAME_NOUNS)
    return f"{adjective}-{noun}-{rng.randint(10, 99)}"


def generate_unique_name(
    exists: Callable[[str], bool],
    attempts: int = NAME_ATTEMPTS,
    rng: Optional[random.Random] = None,
) -> str:
    rng = rng or random.Random()
    for _ in range(attempts):
        candidate = generate_name(rng)
        if not exists(candidate):
            return candidate
        log("DEBUG", f"Generated name '{candidate}' already taken; retrying")
    raise ExhaustedAttempts(f"Could not generate an unused VM name after {attempts} attempts; pass --name")


def sanitize_name(name: str) -> str:
    """Lowercase and reduce a VM name to [a-z0-9-] so it is safe as hostname and directory."""
    cleaned = re.sub(r"[^a-z0-9-]", "-", name.lower())
    cleaned = re.sub(r"-+", "-", cleaned).strip("-")
    if not cleaned:
        raise ManagerError(f"Invalid VM name '{name}': use letters, digits and '-'")
    return cleaned


def generate_password(length: int = 12) -> str:
    try:
        return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
    except NotImplementedError:
        log("WARN", "No secure random source available; generated password is low-assurance")
        fallback = random.Random(time.time())
        return "".join(fallback.choice(PASSWORD_ALPHABET) for _ in range(length))


def generate_mac(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    octets = [rng.randint(0x00, 0xFF) for _ in range(3)]
    return MAC_PREFIX + "".join(f":{octet:02x}" for octet in octets)


def generate_unique_mac(
    known: Collection[str],
    attempts: int = MAC_ATTEMPTS,
    rng: Optional[random.Random] = None,
) -> str:
    rng = rng or random.Random()
    taken = {mac.lower() for mac in known}
    for _ in range(attempts):
        candidate = generate_mac(rng)
        if candidate not in taken:
            return candidate
    raise ExhaustedAttempts(f"Could not generate an unused MAC address after {attempts} attempts")
