import os


def require_env(name: str) -> str:
    """
    Read a required environment variable.
    Raises RuntimeError at startup if the variable is absent or empty.
    Use this for identity and secrets (tenant id, database password).
    """
    value = os.environ.get(name, "").strip()
    if not value:
        raise RuntimeError(
            f"Required environment variable '{name}' is not set. "
            "Set it before starting the service."
        )
    return value


def optional_env(name: str, default: str = "") -> str:
    """
    Read an optional environment variable with a safe default.
    Empty values fall back to the default.
    """
    value = os.environ.get(name, "").strip()
    return value or default


def int_env(name: str, default: int, minimum: int | None = None) -> int:
    raw = optional_env(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable '{name}' must be an integer, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise RuntimeError(f"Environment variable '{name}' must be >= {minimum}, got {value}")
    return value


def float_env(name: str, default: float, minimum: float | None = None) -> float:
    raw = optional_env(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable '{name}' must be a number, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise RuntimeError(f"Environment variable '{name}' must be >= {minimum}, got {value}")
    return value
