"""
Builds the `ssl.SSLContext` handed to `httpx.Client(verify=...)` from the TLS related
`xrestsync.remote.options.ClientOptions`.
"""
import os
import ssl
import tempfile
from logging import getLogger

from xrestsync.errors import ConfigInvalidError

log = getLogger(__name__)


def _load_cert_chain(context: ssl.SSLContext, cert_pem: str, key_pem: str):
    # `load_cert_chain` only accepts file names, so in-memory PEM goes through temp files.
    paths = []
    try:
        for pem in (cert_pem, key_pem):
            fd, path = tempfile.mkstemp(suffix=".pem")
            paths.append(path)
            with os.fdopen(fd, "w") as f:
                f.write(pem)
        context.load_cert_chain(certfile=paths[0], keyfile=paths[1])
    finally:
        for path in paths:
            os.unlink(path)


def build_ssl_context(
        *,
        insecure: bool = False,
        cert_file: str = None,
        key_file: str = None,
        cert_string: str = None,
        key_string: str = None,
        root_ca_file: str = None,
        root_ca_string: str = None
) -> ssl.SSLContext:
    """
    Returns a client side TLS context.

    - `insecure` disables both hostname checking and certificate verification.
    - A client certificate is loaded from files or from PEM strings (a file cert with a
      string key, or the other way around, is also accepted).
    - The root CA bundle (file or PEM string) is added to the default trust store.

    Raises:
        xrestsync.errors.ConfigInvalidError: If a certificate/key/CA can't be loaded.
    """
    context = ssl.create_default_context()

    if insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    try:
        if root_ca_file:
            context.load_verify_locations(cafile=root_ca_file)
        elif root_ca_string:
            context.load_verify_locations(cadata=root_ca_string)

        if cert_file and key_file:
            context.load_cert_chain(certfile=cert_file, keyfile=key_file)
        elif (cert_file or cert_string) and (key_file or key_string):
            cert_pem = cert_string
            key_pem = key_string
            if cert_file:
                with open(cert_file) as f:
                    cert_pem = f.read()
            if key_file:
                with open(key_file) as f:
                    key_pem = f.read()
            _load_cert_chain(context, cert_pem, key_pem)
    except (OSError, ssl.SSLError) as e:
        raise ConfigInvalidError(diagnostics=[f"could not load TLS material: {e}"]) from e

    return context
