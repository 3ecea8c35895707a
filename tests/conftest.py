import os
import tempfile

# Variables obligatoires positionnées avant tout import de sefimap.config
_TMP = tempfile.mkdtemp(prefix="sefimap-tests-")

os.environ.setdefault("BACKEND_URL", "https://backend.test")
os.environ.setdefault("BACKEND_ANON_KEY", "anon-key-test")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_TMP, 'app.db')}")
os.environ.setdefault("JWT_SECRET", "secret-de-test-sefimap")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TMP, "upload"))
