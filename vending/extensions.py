from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager

db = SQLAlchemy()
jwt = JWTManager()

# Revoked token ids (jti). In production, use Redis with a TTL matching token expiry
BLOCKLIST = set()
