import logging
import os
import ssl
import sys

from werkzeug.serving import WSGIRequestHandler, make_server

from mutate import create_app
from exc import ProviderError

LOG = logging.getLogger(__name__)


class DeferredHandshakeContext(ssl.SSLContext):
    """A server TLS context whose sockets do not handshake on accept.

    Werkzeug wraps the listening socket, so a handshake on accept would run
    in the thread that accepts every connection. The handshake is done by
    TimeoutRequestHandler in the connection's own thread instead.
    """

    def wrap_socket(self, sock, *args, **kwargs):
        kwargs["do_handshake_on_connect"] = False
        return super().wrap_socket(sock, *args, **kwargs)


class TimeoutRequestHandler(WSGIRequestHandler):
    def handle(self):
        if isinstance(self.connection, ssl.SSLSocket):
            try:
                self.connection.do_handshake()
            except OSError as err:
                LOG.info("TLS handshake with %s failed: %s", self.client_address[0], err)
                return

        super().handle()


def tls_context(tls_dir, cert_file, key_file) -> ssl.SSLContext:
    """Load the webhook's certificate and key into a server-side TLS context.

    Raises OSError or ssl.SSLError if the files are missing or unusable.
    """

    cert_path = os.path.join(tls_dir, cert_file)
    key_path = os.path.join(tls_dir, key_file)

    context = DeferredHandshakeContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(cert_path, key_path)
    return context


def request_handler(timeout):
    """Return a request handler class whose connections time out after `timeout` seconds.

    The timeout covers the TLS handshake as well as reading the request and
    writing the response.
    """

    return type("TimeoutRequestHandler", (TimeoutRequestHandler,), {"timeout": timeout})


def build_server(app, context):
    cfg = app.config
    return make_server(
        cfg["BIND_ADDRESS"],
        cfg["PORT"],
        app,
        threaded=True,
        request_handler=request_handler(cfg["REQUEST_TIMEOUT"]),
        ssl_context=context,
    )


def main():
    try:
        app = create_app()
    except ProviderError as err:
        LOG.error("unable to load compute unit catalog: %s", err)
        sys.exit(1)

    cfg = app.config

    try:
        context = tls_context(cfg["TLS_DIR"], cfg["TLS_CERT_FILE"], cfg["TLS_KEY_FILE"])
    except (OSError, ssl.SSLError) as err:
        LOG.error("unable to load TLS certificate from %s: %s", cfg["TLS_DIR"], err)
        sys.exit(1)

    # We listen on port 8443 by default so that we do not need root privileges;
    # the Service maps it to 443.
    try:
        server = build_server(app, context)
    except OSError as err:
        LOG.error("unable to listen on %s:%s: %s", cfg["BIND_ADDRESS"], cfg["PORT"], err)
        sys.exit(1)

    LOG.info("Starting admission webhook on https://%s:%s", cfg["BIND_ADDRESS"], cfg["PORT"])
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
