# kutyus/core/errors.py


class KutyusError(Exception):
    """Base class for every error raised by kutyus."""


class FormatError(KutyusError, ValueError):
    """Malformed or unexpected-shape input: wrong arity, wrong fixed length,
    bad optional marker, unsupported version, truncated stream."""


class KeyMaterialError(KutyusError, ValueError):
    """Structurally invalid key material handed in by the key provider."""


class ConfigError(KutyusError, ValueError):
    """Config file missing, unreadable or already initialized."""
