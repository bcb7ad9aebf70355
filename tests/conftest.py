import datetime
import ipaddress
import threading

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from pyftpdlib.authorizers import DummyAuthorizer
from pyftpdlib.handlers import FTPHandler
from pyftpdlib.ioloop import IOLoop
from pyftpdlib.servers import FTPServer

from fake_server import PASSWORD, USER, ScriptedFtpServer, fast_settings
from ftpsclient import FtpsClient


class ServerThread(threading.Thread):
    """Hace girar el ioloop de pyftpdlib hasta stop()."""

    def __init__(self, server: FTPServer):
        super().__init__(name="pyftpdlib", daemon=True)
        self.server = server
        self._stopping = threading.Event()

    def run(self):
        while not self._stopping.is_set():
            self.server.ioloop.loop(timeout=0.01, blocking=False)
        self.server.close_all()

    def stop(self):
        self._stopping.set()
        self.join(5)


def _start_pyftpdlib(root):
    authorizer = DummyAuthorizer()
    authorizer.add_user(USER, PASSWORD, str(root), perm="elradfmw")
    handler = type("TestHandler", (FTPHandler,), {
        "authorizer": authorizer,
        "banner": "pyftpdlib test server ready.",
        "auth_failed_timeout": 0,
    })
    server = FTPServer(("127.0.0.1", 0), handler, ioloop=IOLoop())
    worker = ServerThread(server)
    worker.start()
    return server, worker


@pytest.fixture
def ftp_root(tmp_path):
    root = tmp_path / "ftp"
    root.mkdir()
    return root


@pytest.fixture
def ftp_server(ftp_root):
    server, worker = _start_pyftpdlib(ftp_root)
    yield server
    worker.stop()


@pytest.fixture
def client(ftp_server):
    c = FtpsClient("127.0.0.1", ftp_server.address[1], settings=fast_settings())
    c.open(USER, PASSWORD)
    yield c
    c.close()


@pytest.fixture
def scripted_server():
    servers = []

    def factory(replies=None, **kwargs):
        server = ScriptedFtpServer(replies, **kwargs).start()
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.close()


@pytest.fixture(scope="session")
def certificate_files(tmp_path_factory):
    """Certificado autofirmado para localhost / 127.0.0.1 (PEM) y su clave."""
    directory = tmp_path_factory.mktemp("tls")
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=30))
            .add_extension(x509.SubjectAlternativeName([
                x509.DNSName("localhost"),
                x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
            ]), critical=False)
            .sign(key, hashes.SHA256()))
    cert_path = directory / "server.pem"
    key_path = directory / "server.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption()))
    return cert_path, key_path, cert.public_bytes(serialization.Encoding.DER)
