import os
import tempfile

# must run before app.settings is imported anywhere
_db_dir = tempfile.mkdtemp(prefix="pair-annihilation-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_db_dir}/ratings.db")
os.environ.setdefault("SECRET_KEY", "pair-annihilation-test-secret-0123456789abcdef")
os.environ.setdefault("ORIGIN", "http://localhost:5173")
