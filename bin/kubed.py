#!/usr/bin/env python3
"""
kubed — provision kubeconfig credentials from an OAuth implicit-flow login.

Usage:
    kubed --name prod --api-server https://10.0.0.1:6443 \\
          --issuer https://issuer.example --client-id <id>
    kubed --renew prod

Flow
    1. Obtain an access token, either through a temporary localhost listener
       that catches the identity provider's redirect, or by asking the
       operator to paste the redirected URL (--manual-input).
    2. Exchange the access token for a JWT at <issuer>/token and fetch the
       issuer's CA certificate from <issuer>/ca (best-effort).
    3. Upsert the cluster, user and context entries (all named after the
       cluster) into the kubeconfig, replacing the file atomically.
    4. Remember the cluster parameters in ~/.kubedconf so the token can be
       renewed later with --renew.

Design note — localhost listener
    The implicit flow returns the access token in the URL fragment, which
    never reaches the server.  The listener therefore answers the redirect
    with a small page whose script reads location.hash and calls back into
    /capture?access_token=... on the same listener.  The redirect URI
    registered for the client ID must be http://localhost:<port>.
"""
from __future__ import annotations

import argparse
import base64
import binascii
import logging
import os
import queue
import shlex
import stat
import sys
import tempfile
import threading
import webbrowser
from dataclasses import asdict, dataclass, fields
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlencode, urlparse

import requests
import yaml

__version__ = "0.4.0"

logger = logging.getLogger("kubed")

DEFAULT_AUTH_URL = "https://auth.dataporten.no/oauth/authorization"
DEFAULT_KUBE_CONFIG = "~/.kube/config"
SETTINGS_FILE = ".kubedconf"
DEFAULT_PORT = 49999
DEFAULT_LISTEN_TIMEOUT = 300.0
DEFAULT_HTTP_TIMEOUT = 10.0
CAPTURE_PATH = "/capture"

KUBECONFIG_SECTIONS = ("clusters", "users", "contexts")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class KubedError(Exception):
    """Base class for failures that abort a run."""

    phase = "kubed"


class ConfigurationError(KubedError):
    phase = "configuration"


class SettingsNotFoundError(ConfigurationError):
    pass


class CaptureError(KubedError):
    phase = "capture"


class CaptureTimeoutError(CaptureError):
    pass


class ExchangeError(KubedError):
    phase = "exchange"


class CACertificateError(KubedError):
    """Raised when the issuer's CA certificate cannot be fetched.

    Callers treat this as non-fatal and fall back to the system trust store.
    """

    phase = "ca-certificate"


class MergeError(KubedError):
    phase = "merge"


class KubeconfigParseError(MergeError):
    pass


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def resolve_path(path: str, home: Path) -> Path:
    """Expand a leading ``~`` against the given home directory."""
    if path == "~":
        return home
    if path.startswith("~/") or path.startswith("~" + os.sep):
        return home / path[2:]
    return Path(path)


def atomic_write_text(path: Path, text: str, mode: int = 0o600) -> None:
    """Replace ``path`` with ``text`` so readers never see a partial file.

    Symlinks are followed, so the link target is replaced and the link kept.
    An existing file keeps its permission bits; ``mode`` applies to new files.
    """
    path = Path(path).resolve()
    if path.exists():
        mode = stat.S_IMODE(path.stat().st_mode)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


@dataclass(frozen=True)
class ClusterSpec:
    """Connection parameters for one named cluster."""

    name: str
    api_server: str
    issuer_url: str
    client_id: str
    kube_config: str = DEFAULT_KUBE_CONFIG
    keep_context: bool = False
    port: int = DEFAULT_PORT
    namespace: Optional[str] = None
    manual_input: bool = False
    auth_url: str = DEFAULT_AUTH_URL

    def missing_fields(self) -> List[str]:
        required = [
            ("name", self.name),
            ("api-server", self.api_server),
            ("issuer", self.issuer_url),
            ("client-id", self.client_id),
        ]
        return [flag for flag, value in required if not value]

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record.pop("name")
        return record

    @classmethod
    def from_record(cls, name: str, record: Any) -> "ClusterSpec":
        if not isinstance(record, dict):
            raise ConfigurationError(f"Stored settings for cluster '{name}' are malformed")
        known = {f.name for f in fields(cls)} - {"name"}
        values = {k: v for k, v in record.items() if k in known}
        try:
            spec = cls(name=name, **values)
        except TypeError as e:
            raise ConfigurationError(f"Stored settings for cluster '{name}' are incomplete: {e}") from e
        missing = spec.missing_fields()
        if missing:
            raise ConfigurationError(
                f"Stored settings for cluster '{name}' lack: {', '.join(missing)}"
            )
        spec.check_types()
        return spec

    def check_types(self) -> None:
        """Apply the checks the command line enforces to stored values."""
        problems = []
        for field_name in ("api_server", "issuer_url", "client_id", "kube_config", "auth_url"):
            if not isinstance(getattr(self, field_name), str):
                problems.append(f"{field_name} must be a string")
        if self.namespace is not None and not isinstance(self.namespace, str):
            problems.append("namespace must be a string")
        for field_name in ("keep_context", "manual_input"):
            if not isinstance(getattr(self, field_name), bool):
                problems.append(f"{field_name} must be true or false")
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 1 <= self.port <= 65535:
            problems.append(f"port must be between 1 and 65535, got {self.port!r}")
        if problems:
            raise ConfigurationError(
                f"Stored settings for cluster '{self.name}' are invalid: {'; '.join(problems)}"
            )


@dataclass(frozen=True)
class RuntimeConfig:
    """Process-wide settings, built once in main() and passed explicitly."""

    home: Path
    settings_path: Path
    listen_timeout: Optional[float] = DEFAULT_LISTEN_TIMEOUT
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "RuntimeConfig":
        home = Path.home()
        if args.config:
            settings_path = resolve_path(args.config, home)
        else:
            settings_path = home / SETTINGS_FILE
        return cls(home=home, settings_path=settings_path, listen_timeout=args.timeout)


# ---------------------------------------------------------------------------
# Cluster settings store
# ---------------------------------------------------------------------------

class SettingsStore:
    """YAML file of cluster parameters keyed by cluster name (last write wins)."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"clusters": {}}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read cluster settings {self.path}: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("clusters") or {}, dict):
            raise ConfigurationError(f"Cluster settings {self.path} are malformed")
        data["clusters"] = data.get("clusters") or {}
        return data

    def names(self) -> List[str]:
        return sorted(self._read()["clusters"])

    def load(self, name: str) -> ClusterSpec:
        record = self._read()["clusters"].get(name)
        if record is None:
            raise SettingsNotFoundError(f"No saved settings for cluster '{name}' in {self.path}")
        return ClusterSpec.from_record(name, record)

    def save(self, spec: ClusterSpec) -> None:
        data = self._read()
        data["clusters"][spec.name] = spec.to_record()
        try:
            atomic_write_text(self.path, yaml.safe_dump(data, sort_keys=False))
        except OSError as e:
            raise ConfigurationError(f"Failed in saving {self.path}: {e}") from e
        logger.debug("Saved settings for cluster %s in %s", spec.name, self.path)


# ---------------------------------------------------------------------------
# Token capture
# ---------------------------------------------------------------------------

_LANDING_PAGE = """\
<!DOCTYPE html>
<html>
<head><title>kubed</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 50px;">
<h1 id="status">Completing login...</h1>
<script>
  var params = new URLSearchParams(window.location.hash.substring(1));
  var token = params.get("access_token");
  if (token) {
    window.location.replace("%s?access_token=" + encodeURIComponent(token));
  } else {
    document.getElementById("status").textContent =
      "No access token found in the redirect. Return to your terminal.";
  }
</script>
</body>
</html>
""" % CAPTURE_PATH


def _result_page(message: str) -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head><title>kubed</title></head>\n"
        '<body style="font-family: sans-serif; text-align: center; padding: 50px;">\n'
        f"<h1>{message}</h1>\n<p>Return to your terminal to continue.</p>\n"
        "</body>\n</html>\n"
    )


def build_auth_url(auth_url: str, client_id: str) -> str:
    return f"{auth_url}?" + urlencode({"response_type": "token", "client_id": client_id})


class _CaptureHandler(BaseHTTPRequestHandler):
    server_version = f"kubed/{__version__}"

    def do_GET(self):
        parsed = urlparse(self.path)
        if parsed.path == "/":
            self._send_html(200, _LANDING_PAGE)
        elif parsed.path == CAPTURE_PATH:
            token = parse_qs(parsed.query).get("access_token", [""])[0]
            if not token:
                self._send_html(400, _result_page("Login failed: no access token received"))
                return
            self._send_html(200, _result_page("Login complete. You can close this window."))
            self.server.deliver(("token", token))
        else:
            self.send_response(404)
            self.end_headers()

    def _send_html(self, status: int, body: str) -> None:
        payload = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format, *args):
        logger.debug("listener: %s", format % args)


class TokenCaptureServer(HTTPServer):
    """Localhost listener handing exactly one result to the waiting caller."""

    def __init__(self, port: int, host: str = "localhost"):
        super().__init__((host, port), _CaptureHandler)
        self.results: "queue.Queue[Tuple[str, Any]]" = queue.Queue(maxsize=1)

    def deliver(self, result: Tuple[str, Any]) -> None:
        try:
            self.results.put_nowait(result)
        except queue.Full:
            logger.debug("Ignoring %s result, capture already completed", result[0])


def _launch_browser(open_browser: Callable[[str], Any], url: str, server: TokenCaptureServer) -> None:
    try:
        opened = open_browser(url)
    except Exception as e:
        server.deliver(("error", e))
        return
    if opened is False:
        server.deliver(("error", "no usable browser found"))


def capture_token(
    port: int,
    auth_url: str,
    open_browser: Optional[Callable[[str], Any]] = None,
    timeout: Optional[float] = DEFAULT_LISTEN_TIMEOUT,
    host: str = "localhost",
) -> str:
    """Open ``auth_url`` in a browser and wait for the redirect on ``host:port``.

    The browser is launched on its own thread; its failure is reported back
    through the listener's result queue.  Raises CaptureTimeoutError when no
    token arrives within ``timeout`` seconds (None waits forever).
    """
    if open_browser is None:
        open_browser = webbrowser.open
    try:
        server = TokenCaptureServer(port, host)
    except OSError as e:
        raise CaptureError(f"Cannot listen on {host}:{port}: {e}") from e

    listener = threading.Thread(target=server.serve_forever, name="kubed-listener", daemon=True)
    launcher = threading.Thread(
        target=_launch_browser, args=(open_browser, auth_url, server),
        name="kubed-browser", daemon=True,
    )
    listener.start()
    try:
        logger.info("Waiting for login redirect on http://%s:%d/", host, port)
        logger.info("Opening %s in your browser (without a local browser, rerun with --manual-input)",
                    auth_url)
        launcher.start()
        try:
            kind, value = server.results.get(timeout=timeout)
        except queue.Empty:
            raise CaptureTimeoutError(
                f"No access token received on {host}:{port} within {timeout:g}s"
            ) from None
    finally:
        server.shutdown()
        server.server_close()

    if kind == "error":
        raise CaptureError(f"Failed in opening browser: {value}")
    return value


def extract_access_token(redirect_url: str) -> str:
    """Return the access_token carried in the fragment of a redirected URL."""
    url = redirect_url.strip()
    if "#" not in url:
        raise CaptureError("Redirected URL has no '#' fragment; paste the full address bar URL")
    fragment = url.split("#", 1)[1]
    for pair in fragment.split("&"):
        key, _, value = pair.partition("=")
        if key == "access_token":
            if not value:
                raise CaptureError("Redirected URL carries an empty access_token")
            return value
    raise CaptureError("Redirected URL fragment has no access_token parameter")


def read_redirect_url(auth_url: str, input_fn: Optional[Callable[[str], str]] = None) -> str:
    if input_fn is None:
        input_fn = input
    print(f"Open a browser and navigate to {auth_url}")
    print("After authentication, you are redirected to an invalid URL. Copy/paste this url below:")
    try:
        return input_fn("Redirected URL: ")
    except EOFError:
        raise CaptureError("No redirected URL entered") from None


# ---------------------------------------------------------------------------
# Issuer client
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IssuedCredential:
    jwt: str
    ca_data: Optional[str] = None


def _payload_field(response: requests.Response, key: str) -> str:
    """Read ``key`` from a JSON body, or the raw body when it is not JSON."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(body, dict):
        value = body.get(key)
        return value.strip() if isinstance(value, str) else ""
    if isinstance(body, str):
        return body.strip()
    return ""


def encode_ca_data(data: str) -> str:
    """Normalise issuer CA output to a certificate-authority-data value."""
    if "-----BEGIN" in data:
        return base64.b64encode(data.encode("utf-8")).decode("ascii")
    compact = "".join(data.split())
    try:
        base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CACertificateError(f"CA certificate is neither PEM nor base64: {e}") from e
    return compact


class IssuerClient:
    """Client for the token issuer's JWT and CA certificate endpoints.

    Nothing here retries: the access token is single-use, so a failed
    exchange ends the run.
    """

    def __init__(self, issuer_url: str, timeout: float = DEFAULT_HTTP_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.issuer_url = issuer_url.rstrip("/")
        self.timeout = timeout
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update({
            "Accept": "application/json",
            "User-Agent": f"kubed/{__version__}",
        })
        return session

    def close(self) -> None:
        self.session.close()

    def exchange_jwt(self, access_token: str) -> str:
        url = f"{self.issuer_url}/token"
        try:
            resp = self.session.get(
                url,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ExchangeError(f"JWT request to {url} failed: {e}") from e
        jwt = _payload_field(resp, "token")
        if not jwt:
            raise ExchangeError(f"Issuer {url} returned no token")
        return jwt

    def fetch_ca_certificate(self) -> str:
        url = f"{self.issuer_url}/ca"
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise CACertificateError(f"CA request to {url} failed: {e}") from e
        data = _payload_field(resp, "ca")
        if not data:
            raise CACertificateError(f"Issuer {url} returned an empty CA certificate")
        return encode_ca_data(data)

    def fetch_credential(self, access_token: str) -> IssuedCredential:
        jwt = self.exchange_jwt(access_token)
        try:
            ca_data: Optional[str] = self.fetch_ca_certificate()
        except CACertificateError as e:
            logger.warning("No custom CA certificate provided, assuming running with standard certificate (%s)", e)
            ca_data = None
        return IssuedCredential(jwt=jwt, ca_data=ca_data)


# ---------------------------------------------------------------------------
# Kubeconfig merge
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KubeConfigEntry:
    """One cluster/user/context triple, all three named ``name``."""

    name: str
    server: str
    token: str
    ca_data: Optional[str] = None
    namespace: Optional[str] = None

    @classmethod
    def from_credential(cls, spec: ClusterSpec, credential: IssuedCredential) -> "KubeConfigEntry":
        return cls(
            name=spec.name,
            server=spec.api_server,
            token=credential.jwt,
            ca_data=credential.ca_data,
            namespace=spec.namespace or None,
        )


def empty_kubeconfig() -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "preferences": {},
        "clusters": [],
        "users": [],
        "contexts": [],
        "current-context": "",
    }


def parse_kubeconfig(text: str, source: str = "<kubeconfig>") -> Dict[str, Any]:
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise KubeconfigParseError(f"{source} is not valid YAML: {e}") from e
    if doc is None:
        return empty_kubeconfig()
    if not isinstance(doc, dict):
        raise KubeconfigParseError(f"{source} is not a kubeconfig document")
    if doc.get("kind", "Config") != "Config":
        raise KubeconfigParseError(f"{source} has kind {doc.get('kind')!r}, expected 'Config'")
    for section in KUBECONFIG_SECTIONS:
        items = doc.get(section)
        if items is None:
            doc[section] = []
            continue
        if not isinstance(items, list):
            raise KubeconfigParseError(f"{source}: '{section}' must be a list")
        for item in items:
            if not isinstance(item, dict) or not item.get("name"):
                raise KubeconfigParseError(f"{source}: every entry in '{section}' needs a name")
    return doc


def dump_kubeconfig(doc: Dict[str, Any]) -> str:
    return yaml.safe_dump(doc, default_flow_style=False, sort_keys=False)


def load_kubeconfig(path: Path) -> Dict[str, Any]:
    """Read the kubeconfig at ``path``; a missing file yields an empty document."""
    if not path.exists():
        logger.debug("No kubeconfig at %s, starting from an empty one", path)
        return empty_kubeconfig()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise MergeError(f"Cannot read kubeconfig {path}: {e}") from e
    return parse_kubeconfig(text, str(path))


def _find(items: List[Dict[str, Any]], name: str) -> Optional[Dict[str, Any]]:
    for item in items:
        if item.get("name") == name:
            return item
    return None


def _upsert(doc: Dict[str, Any], section: str, name: str, key: str, body: Dict[str, Any]) -> None:
    items = doc.get(section) or []
    doc[section] = items
    item = {"name": name, key: body}
    for i, existing in enumerate(items):
        if existing.get("name") == name:
            items[i] = item
            return
    items.append(item)


def merge_entry(doc: Dict[str, Any], entry: KubeConfigEntry, keep_context: bool = False) -> Dict[str, Any]:
    """Upsert ``entry`` into ``doc`` in place and return it.

    Each of the cluster, user and context objects is replaced as a whole,
    except that a context without an explicit namespace keeps the namespace
    it already had.
    """
    doc.setdefault("apiVersion", "v1")
    doc.setdefault("kind", "Config")

    cluster: Dict[str, Any] = {"server": entry.server}
    if entry.ca_data:
        cluster["certificate-authority-data"] = entry.ca_data
    _upsert(doc, "clusters", entry.name, "cluster", cluster)

    _upsert(doc, "users", entry.name, "user", {"token": entry.token})

    context: Dict[str, Any] = {"cluster": entry.name, "user": entry.name}
    namespace = entry.namespace
    if namespace is None:
        previous = _find(doc.get("contexts") or [], entry.name)
        if previous:
            namespace = (previous.get("context") or {}).get("namespace")
    if namespace:
        context["namespace"] = namespace
    _upsert(doc, "contexts", entry.name, "context", context)

    if not keep_context:
        doc["current-context"] = entry.name
    return doc


def write_kubeconfig(path: Path, doc: Dict[str, Any]) -> None:
    try:
        atomic_write_text(path, dump_kubeconfig(doc))
    except OSError as e:
        raise MergeError(f"Failed in writing kubeconfig {path}: {e}") from e


def apply_kubeconfig(path: Path, entry: KubeConfigEntry, keep_context: bool = False) -> Dict[str, Any]:
    doc = merge_entry(load_kubeconfig(path), entry, keep_context=keep_context)
    write_kubeconfig(path, doc)
    logger.debug("Merged context %s into %s", entry.name, path)
    return doc


def verify_kubeconfig(path: Path, context: str) -> bool:
    """Check that the Kubernetes client can build a client for ``context``.

    Only logs on failure; the file has already been written.
    """
    from kubernetes import config as k8s_config

    try:
        api_client = k8s_config.new_client_from_config(
            config_file=str(path), context=context, persist_config=False,
        )
    except (k8s_config.ConfigException, ValueError, OSError) as e:
        logger.warning("Kubernetes client cannot load context %s from %s: %s", context, path, e)
        return False
    api_client.close()
    return True


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def run(
    spec: ClusterSpec,
    runtime: RuntimeConfig,
    renewing: bool = False,
    open_browser: Optional[Callable[[str], Any]] = None,
    input_fn: Optional[Callable[[str], str]] = None,
    issuer_factory: Optional[Callable[..., IssuerClient]] = None,
) -> Path:
    """Obtain a JWT for ``spec`` and merge it into its kubeconfig."""
    kube_config = resolve_path(spec.kube_config, runtime.home)
    auth_url = build_auth_url(spec.auth_url, spec.client_id)

    logger.info("Requesting access token for client %s", spec.client_id)
    if spec.manual_input:
        token = extract_access_token(read_redirect_url(auth_url, input_fn))
    else:
        token = capture_token(spec.port, auth_url, open_browser=open_browser,
                              timeout=runtime.listen_timeout)

    logger.info("Requesting JWT token from %s", spec.issuer_url)
    issuer = (issuer_factory or IssuerClient)(spec.issuer_url, timeout=runtime.http_timeout)
    try:
        credential = issuer.fetch_credential(token)
    finally:
        issuer.close()

    entry = KubeConfigEntry.from_credential(spec, credential)
    apply_kubeconfig(kube_config, entry, keep_context=spec.keep_context)
    verify_kubeconfig(kube_config, spec.name)

    if not renewing:
        SettingsStore(runtime.settings_path).save(spec)

    print(f'Kubernetes configuration has been saved in "{kube_config}" with context "{spec.name}"')
    print(f'To renew JWT token for this cluster run: "{renew_command(spec, runtime)}"')
    return kube_config


def renew_command(spec: ClusterSpec, runtime: RuntimeConfig) -> str:
    command = ["kubed"]
    if runtime.settings_path != runtime.home / SETTINGS_FILE:
        command += ["--config", str(runtime.settings_path)]
    command += ["--renew", spec.name]
    return " ".join(shlex.quote(part) for part in command)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}") from None
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError("port must be between 1 and 65535")
    return port


def parse_timeout(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid timeout: {value!r}") from None
    if seconds <= 0:
        raise argparse.ArgumentTypeError("timeout must be positive")
    return seconds


def build_spec(args: argparse.Namespace) -> ClusterSpec:
    spec = ClusterSpec(
        name=args.name or "",
        api_server=args.api_server or "",
        issuer_url=args.issuer or "",
        client_id=args.client_id or "",
        kube_config=args.kube_config,
        keep_context=args.keep_context,
        port=args.port,
        namespace=args.namespace or None,
        manual_input=args.manual_input,
        auth_url=args.auth_url,
    )
    missing = spec.missing_fields()
    if missing:
        raise ConfigurationError(f"Missing required fields: {', '.join(missing)}")
    return spec


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubed",
        description="Fetch a JWT for a Kubernetes cluster and store it in your kubeconfig.",
    )
    parser.add_argument("--name", default=None,
                        help="Name of this Kubernetes cluster, used for context as well (required)")
    parser.add_argument("--api-server", default=None,
                        help="Address of Kubernetes API server (required)")
    parser.add_argument("--issuer", default=None, help="Address of JWT token issuer (required)")
    parser.add_argument("--client-id", default=None, help="OAuth client ID for kubed (required)")
    parser.add_argument("--kube-config", default=DEFAULT_KUBE_CONFIG,
                        help=f"Path to the kubeconfig to manage (default: {DEFAULT_KUBE_CONFIG})")
    parser.add_argument("--keep-context", action="store_true",
                        help="Keep the current context instead of switching to the new one")
    parser.add_argument("--port", type=parse_port, default=DEFAULT_PORT,
                        help=f"Local port the OAuth provider redirects to (default: {DEFAULT_PORT})")
    parser.add_argument("--namespace", default=None, help="Default namespace for the context")
    parser.add_argument("--manual-input", action="store_true",
                        help="Paste the redirected URL instead of using a local browser")
    parser.add_argument("--auth-url", default=DEFAULT_AUTH_URL,
                        help=f"OAuth authorization endpoint (default: {DEFAULT_AUTH_URL})")
    parser.add_argument("--renew", default=None, metavar="NAME",
                        help="Renew the JWT token for a previously configured cluster")
    parser.add_argument("--list", action="store_true",
                        help="List clusters saved for renewal and exit")
    parser.add_argument("--config", "-c", default=None,
                        help=f"Path to cluster settings file (default: ~/{SETTINGS_FILE})")
    parser.add_argument("--timeout", type=parse_timeout, default=DEFAULT_LISTEN_TIMEOUT,
                        help=f"Seconds to wait for the login redirect (default: {DEFAULT_LISTEN_TIMEOUT:g})")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"kubed version {__version__}")
    return parser


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    if argv is None:
        argv = sys.argv[1:]
    if not argv:
        parser.print_help()
        return 1
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    runtime = RuntimeConfig.from_args(args)

    try:
        store = SettingsStore(runtime.settings_path)
        if args.list:
            for name in store.names():
                print(name)
            return 0
        if args.renew:
            spec = store.load(args.renew)
            renewing = True
        else:
            spec = build_spec(args)
            renewing = False
        run(spec, runtime, renewing=renewing)
    except KubedError as e:
        print(f"Error ({e.phase}): {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
