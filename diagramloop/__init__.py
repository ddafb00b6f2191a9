import os
from pathlib import Path


def _load_dotenv_if_needed() -> None:
    # Keep pytest runs offline and deterministic
    if os.getenv("PYTEST_CURRENT_TEST"):
        return
    env_path = Path(os.getenv("DIAGRAMLOOP_ENV_FILE", ".env"))
    if not env_path.is_file():
        return
    try:
        lines = env_path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = (part.strip() for part in line.split("=", 1))
        if len(val) >= 2 and val[0] == val[-1] and val[0] in {'"', "'"}:
            val = val[1:-1]
        # Real environment always wins over the file
        if key:
            os.environ.setdefault(key, val)


_load_dotenv_if_needed()

__version__ = "0.1.0"
