"""Room, client and display-name helpers."""
from __future__ import annotations

import random
import re
import secrets
import time

ADJECTIVES = [
    "Happy", "Clever", "Bright", "Swift", "Calm", "Bold", "Wise", "Kind",
    "Brave", "Cool", "Smart", "Quick", "Gentle", "Noble", "Proud", "Keen",
    "Witty", "Sunny", "Merry", "Jolly", "Lively", "Eager", "Zesty", "Peppy",
    "Daring", "Mighty", "Trusty", "Loyal", "Honest", "Fair", "True", "Pure",
]

NOUNS = [
    "Panda", "Tiger", "Eagle", "Dolphin", "Fox", "Wolf", "Bear", "Hawk",
    "Lion", "Falcon", "Otter", "Lynx", "Raven", "Phoenix", "Dragon", "Owl",
    "Jaguar", "Cheetah", "Panther", "Cobra", "Shark", "Whale", "Penguin", "Koala",
    "Leopard", "Gazelle", "Stallion", "Mustang", "Bison", "Moose", "Elk", "Deer",
]

_INVITE_MARKER = "/room/"


def generate_room_id() -> str:
    return secrets.token_hex(12)


def generate_client_id() -> str:
    """Millisecond timestamp plus a random suffix; unique enough within one room."""

    return f"{int(time.time() * 1000)}{secrets.token_hex(6)}"


def extract_room_id(invite: str) -> str:
    """Accept either a bare room code or an invite link containing ``/room/<id>``."""

    if _INVITE_MARKER in invite:
        tail = invite.split(_INVITE_MARKER, 1)[1]
        return re.split(r"[?#]", tail, maxsplit=1)[0].strip("/ ")
    return invite.strip()


def invite_link(origin: str, room_id: str) -> str:
    return f"{origin.rstrip('/')}{_INVITE_MARKER}{room_id}"


def generate_display_name(with_number: bool = False, rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    name = f"{rng.choice(ADJECTIVES)} {rng.choice(NOUNS)}"
    if with_number:
        name = f"{name} {rng.randrange(100)}"
    return name
