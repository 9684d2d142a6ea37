from . import auth
from . import nfc
from . import pos
from . import vip
from . import webhooks

__all__ = [
    "auth",
    "nfc",
    "pos",
    "vip",
    "webhooks",
]
