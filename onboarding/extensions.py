from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# ======================
# Persistence
# ======================
db = SQLAlchemy()
migrate = Migrate()

# ======================
# Sessions
# ======================
# No login_view: anonymous API calls get the JSON 401 from auth.unauthorized.
login_manager = LoginManager()

# ======================
# Rate limiting
# ======================
# Backend from RATELIMIT_STORAGE_URI; only login and the public supplier
# endpoints carry limits.
limiter = Limiter(key_func=get_remote_address, default_limits=[])
