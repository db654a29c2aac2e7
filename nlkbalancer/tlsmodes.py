"""TLS modes accepted in the configuration."""

NO_TLS = "no-tls"
"""Deprecated alias of SKIP_VERIFY_TLS."""

SKIP_VERIFY_TLS = "skip-verify-tls"
"""Skip verification of the NGINX host's certificate chain and host name."""

CA_TLS = "ca-tls"
"""Deprecated; the same as the default of verifying the NGINX host."""

_TLS_MODES = {
    NO_TLS: True,
    SKIP_VERIFY_TLS: True,
    CA_TLS: False,
}


def skip_verify_tls(mode: str) -> bool:
    """Whether the given TLS mode skips certificate verification.

    An empty mode means the default, which verifies. Unknown modes raise
    ValueError.
    """
    if not mode:
        return False
    try:
        return _TLS_MODES[mode]
    except KeyError:
        raise ValueError(f"invalid tls_mode value: {mode}") from None