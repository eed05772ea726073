from .request_id_middleware import *
from .security_middleware import *
from .cron_auth import *

__all__ = [
    "RequestIDMiddleware",
    "DevSecurityMiddleware",
    "ProdSecurityMiddleware",
    "CronSecretBearer",
    "verify_cron_secret",
]
