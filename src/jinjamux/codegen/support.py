from __future__ import annotations

import ast
from string import Template

from jinjamux.codegen.imports import ImportManager
from jinjamux.domain.models import RoutesConfig

VERSION = "0.1.0"

# Imported by every generated module, before any application type.
STANDARD_IMPORTS = (
    ("http", "HTTPStatus"),
    ("typing", "Any"),
    ("typing", "Protocol"),
    ("urllib.parse", "quote"),
    ("starlette.datastructures", "FormData"),
    ("starlette.datastructures", "MutableHeaders"),
    ("starlette.requests", "Request"),
    ("starlette.responses", "PlainTextResponse"),
    ("starlette.responses", "Response"),
    ("starlette.routing", "BaseRoute"),
    ("starlette.routing", "Host"),
    ("starlette.routing", "Route"),
    ("starlette.routing", "Router"),
)
STANDARD_MODULES = ("html", "io", "logging", "posixpath")

_HELPERS = Template('''
_logger = logging.getLogger(__name__)

JINJAMUX_VERSION = $version

_TRUE_TOKENS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_TOKENS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

def _parse_bool(text: str) -> bool:
    if text in _TRUE_TOKENS:
        return True
    if text in _FALSE_TOKENS:
        return False
    raise ValueError(f"invalid boolean {text!r}")

def _error_status(err: BaseException) -> int:
    status = getattr(err, "status_code", None)
    if callable(status):
        status = status()
    if isinstance(status, int) and status:
        return status
    return HTTPStatus.INTERNAL_SERVER_ERROR

def _error_text(errors: list[BaseException]) -> str:
    return "\\n".join(html.escape(str(err)) for err in errors)

def _join(prefix: str, *segments: str) -> str:
    return posixpath.normpath(posixpath.join(prefix or "/", *segments))

def _segment(text: str, safe: str = "") -> str:
    return quote(text, safe=safe)

def _encode_text(value: Any, message: str) -> tuple[str, ValueError | None]:
    try:
        return value.to_text(), None
    except Exception as err:
        wrapped = ValueError(f"{message}: {err}")
        wrapped.__cause__ = err
        return "", wrapped

async def _read_form(request: Request) -> FormData:
    """Query values followed by body values; ``get`` returns the body value when both are sent."""
    body = await request.form()
    return FormData([*request.query_params.multi_items(), *body.multi_items()])

def _register_routes(router: Router, entries: list[tuple[int, str, BaseRoute]]) -> None:
    hosts: dict[str, Router] = {}
    for _, host, route in sorted(entries, key=lambda entry: entry[0]):
        if not host:
            router.routes.append(route)
            continue
        if host not in hosts:
            hosts[host] = Router()
            router.routes.append(Host(host, app=hosts[host]))
        hosts[host].routes.append(route)
''')

_CLASSES = Template('''
class ResponseWriter:
    """Buffered response the handler, and any method taking ``response``, writes into."""

    def __init__(self) -> None:
        self.headers = MutableHeaders()
        self.status_code = 0
        self.body = io.BytesIO()

    def write_header(self, status_code: int) -> None:
        if not self.status_code:
            self.status_code = int(status_code)

    def write(self, data: bytes | str) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not self.status_code:
            self.status_code = HTTPStatus.OK
        return self.body.write(data)

    def redirect(self, url: str, status_code: int = HTTPStatus.SEE_OTHER) -> None:
        self.headers["location"] = url
        self.write_header(status_code)

    def to_response(self) -> Response:
        return Response(self.body.getvalue(), status_code=self.status_code or HTTPStatus.OK, headers=self.headers)

class $template_data:
    """Passed to every route template as ``data``."""

    def __init__(self, receiver: $receiver_interface, response: ResponseWriter, request: Request, paths: $route_paths) -> None:
        self._receiver = receiver
        self._response = response
        self._request = request
        self._paths = paths
        self._result: Any = None
        self._ok = False
        self._errors: list[BaseException] = []
        self._status_code = 0
        self._err_status_code = 0
        self._redirect_url = ""

    def result(self) -> Any:
        return self._result

    def ok(self) -> bool:
        return self._ok

    def err(self) -> BaseExceptionGroup | None:
        if not self._errors:
            return None
        return BaseExceptionGroup("request failed", list(self._errors))

    def request(self) -> Request:
        return self._request

    def receiver(self) -> $receiver_interface:
        return self._receiver

    def path(self) -> $route_paths:
        return self._paths

    def version(self) -> str:
        return JINJAMUX_VERSION

    def status_code(self, code: int) -> str:
        self._status_code = int(code)
        return ""

    def header(self, key: str, value: str) -> str:
        self._response.headers[key] = value
        return ""

    def redirect(self, url: str, code: int = HTTPStatus.SEE_OTHER) -> str:
        if not 300 <= int(code) < 400:
            raise ValueError(f"invalid status code {code} for redirect")
        self._redirect_url = url
        self._status_code = int(code)
        return ""
''')


def register_imports(imports: ImportManager, config: RoutesConfig) -> None:
    imports.reserve(
        "ResponseWriter",
        config.template_data_type,
        config.route_paths_type,
        config.receiver_interface,
        config.routes_function,
        "JINJAMUX_VERSION",
    )
    for module in STANDARD_MODULES:
        imports.module(module)
    for module, symbol in STANDARD_IMPORTS:
        imports.name(module, symbol)


def helper_statements() -> list[ast.stmt]:
    return ast.parse(_HELPERS.substitute(version=repr(VERSION))).body


def class_statements(config: RoutesConfig) -> list[ast.stmt]:
    source = _CLASSES.substitute(
        template_data=config.template_data_type,
        receiver_interface=config.receiver_interface,
        route_paths=config.route_paths_type,
    )
    return ast.parse(source).body
