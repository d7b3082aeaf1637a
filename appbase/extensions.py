"""
Flask extension instances, bound to the application in create_app().
"""

from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address


jwt = JWTManager()

# Storage and enablement come from RATELIMIT_STORAGE_URI / RATELIMIT_ENABLED
limiter = Limiter(key_func=get_remote_address)
