from pathlib import Path
import importlib
import logging
import textwrap

import pytest
from starlette.applications import Starlette
from starlette.testclient import TestClient

from jinjamux.domain.models import RoutesConfig
from jinjamux.orchestrator.pipeline import run_generate

USERS = """
from __future__ import annotations

from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import Any

from jinja2 import DictLoader, Environment


@dataclass
class User:
    name: str
    age: int


@dataclass
class UserForm:
    Name: str
    Age: int


@dataclass
class Query:
    q: str


@dataclass
class TagForm:
    ids: list[int]
    tags: list[str]


class Slug:
    def __init__(self, text: str) -> None:
        self.text = text

    @classmethod
    def from_text(cls, text: str) -> Slug:
        if not text.islower():
            raise ValueError(f"bad slug {text!r}")
        return cls(text)

    def to_text(self) -> str:
        if not self.text:
            raise ValueError("empty slug")
        return self.text


class NotFound(Exception):
    status_code = 404


class Server:
    def __init__(self) -> None:
        self.users = {1: User("Ada", 36)}

    def CreateUser(self, ctx: MutableMapping[str, Any], form: UserForm) -> User:
        user = User(form.Name, form.Age)
        self.users[len(self.users) + 1] = user
        return user

    def GetUser(self, id: int) -> tuple[User, bool]:
        user = self.users.get(id)
        if user is None:
            return User("", 0), False
        return user, True

    def LoadUser(self, id: int) -> tuple[User, Exception | None]:
        user = self.users.get(id)
        if user is None:
            return User("", 0), NotFound(f"user {id} not found")
        return user, None

    def Article(self, slug: Slug) -> str:
        return slug.text

    def Search(self, form: Query) -> str:
        return f"q={form.q}"

    def Tags(self, form: TagForm) -> str:
        return f"{sum(form.ids)} {' '.join(form.tags)}"

    def Page(self, int: int) -> str:
        return f"page {int}"

    def Raw(self, response: Any) -> str:
        response.headers["x-raw"] = "1"
        response.write_header(202)
        response.write("head:")
        return "ok"


templates = Environment(
    loader=DictLoader(
        {
            "POST /user 201 CreateUser(ctx, form)": (
                '<input name="Name" minlength="2"><input name="Age" type="number" min="0">'
                "{{ data.result().name }}"
            ),
            "GET /user/{id} GetUser(id)": "<p>{{ data.result().name }}</p>",
            "GET /load/{id} LoadUser(id)": "<p>{{ data.result().name }}</p>",
            "GET /article/{slug} Article(slug)": "{{ data.result() }}",
            "GET /raw Raw(response)": "{{ data.result() }}",
            "GET /search Search(form)": "{{ data.result() }}",
            "POST /search Search(form)": "{{ data.result() }}",
            "POST /tags Tags(form)": '<input name="tags" pattern="[a-z]+" maxlength="3">{{ data.result() }}',
            "GET /p/{int} Page(int)": "{{ data.result() }}",
            "GET /old": "{{ data.redirect(data.path().ReadNew()) }}",
            "GET /new": "new",
            "GET /teapot": "{{ data.status_code(418) }}{{ data.header('X-Kind', 'teapot') }}short and stout",
            "GET /boom": "{{ nothing() }}",
        }
    ),
    autoescape=True,
)
"""

STUBS = """
from jinja2 import DictLoader, Environment


def shout(name: str) -> str:
    return name.upper()


templates = Environment(
    loader=DictLoader(
        {
            "GET /greet/{name} Greet(name)": "{{ data.result() }}",
            "GET /shout/{name} shout(name)": "{{ data.result() }}",
        }
    ),
    autoescape=True,
)
"""


def write(p: Path, s: str) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(textwrap.dedent(s), encoding="utf-8")


def build(root: Path, mp: pytest.MonkeyPatch, package: str, source: str, **options):
    write(root / package / "__init__.py", "")
    write(root / package / "templates.py", source)
    mp.syspath_prepend(str(root))
    run_generate(RoutesConfig(templates_module=f"{package}.templates", **options))
    importlib.invalidate_caches()
    return importlib.import_module(f"{package}.template_routes"), importlib.import_module(f"{package}.templates")


@pytest.fixture(scope="module")
def users(tmp_path_factory):
    root = tmp_path_factory.mktemp("users")
    with pytest.MonkeyPatch.context() as mp:
        routes, templates = build(root, mp, "runtime_users", USERS, receiver_type="Server")
        app = Starlette()
        paths = routes.template_routes(app.router, templates.Server())
        yield TestClient(app), paths, templates


@pytest.fixture(scope="module")
def client(users):
    return users[0]


def test_form_is_bound_and_default_status_is_used(client):
    r = client.post("/user", data={"Name": "Grace", "Age": "45"})
    assert r.status_code == 201
    assert "Grace" in r.text
    assert r.headers["content-type"] == "text/html; charset=utf-8"


def test_form_conversion_failure_is_400(client):
    r = client.post("/user", data={"Name": "Grace", "Age": "old"})
    assert r.status_code == 400
    assert "invalid literal for int()" in r.text


def test_form_constraints_are_enforced(client):
    r = client.post("/user", data={"Name": "G", "Age": "-1"})
    assert r.status_code == 400
    assert "Name is too short (the min length is 2)" in r.text
    assert "Age must not be less than 0" in r.text


def test_form_reads_query_values(client):
    r = client.get("/search?q=cats")
    assert r.status_code == 200
    assert r.text == "q=cats"

    # body values win over the query string
    r = client.post("/search?q=query", data={"q": "body"})
    assert r.text == "q=body"


def test_sequence_form_fields(client):
    r = client.post("/tags", data={"ids": ["1", "2"], "tags": ["ab", "cd"]})
    assert r.status_code == 200
    assert r.text.endswith("3 ab cd")

    r = client.post("/tags", data={"ids": ["1", "x"], "tags": ["toolong", "A"]})
    assert r.status_code == 400
    assert "invalid literal for int()" in r.text
    assert "tags is too long (the max length is 3)" in r.text
    assert "tags must match" in r.text


def test_path_parameter_named_like_a_builtin(users):
    client, paths, _ = users
    r = client.get("/p/3")
    assert r.status_code == 200
    assert r.text == "page 3"
    assert paths.Page(3) == "/p/3"


def test_path_parameter_is_converted(client):
    r = client.get("/user/1")
    assert r.status_code == 200
    assert r.text == "<p>Ada</p>"

    r = client.get("/user/abc")
    assert r.status_code == 400


def test_false_ok_result_renders_nothing(client):
    r = client.get("/user/99")
    assert r.status_code == 200
    assert r.text == ""


def test_returned_error_uses_its_status(client):
    r = client.get("/load/7")
    assert r.status_code == 404
    assert "user 7 not found" in r.text


def test_redirect_from_template(client):
    r = client.get("/old", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/new"


def test_status_and_headers_from_template(client):
    r = client.get("/teapot")
    assert r.status_code == 418
    assert r.headers["x-kind"] == "teapot"
    assert r.text == "short and stout"


def test_response_writer_routes_own_the_status(client):
    r = client.get("/raw")
    assert r.status_code == 202
    assert r.headers["x-raw"] == "1"
    assert r.text == "head:ok"


def test_render_failure_is_500(client, caplog):
    with caplog.at_level(logging.ERROR):
        r = client.get("/boom")
    assert r.status_code == 500
    assert r.text == "failed to render page"
    assert any(rec.getMessage() == "failed to render page" for rec in caplog.records)


def test_text_decoding_path_parameter(client):
    assert client.get("/article/hello").text == "hello"
    r = client.get("/article/Hello")
    assert r.status_code == 400
    assert "bad slug" in r.text


def test_url_builders_round_trip(users):
    client, paths, templates = users
    assert paths.GetUser(1) == "/user/1"
    assert client.get(paths.GetUser(1)).text == "<p>Ada</p>"
    assert paths.ReadNew() == "/new"

    url, err = paths.Article(templates.Slug("two words"))
    assert err is None
    assert url == "/article/two%20words"
    assert client.get(url).text == "two words"

    url, err = paths.Article(templates.Slug(""))
    assert url == ""
    assert "failed to encode path value {slug} (segment 2) in /article/{slug}: empty slug" in str(err)


def test_receiver_can_be_any_object_without_a_receiver_type(tmp_path, monkeypatch):
    routes, _ = build(tmp_path, monkeypatch, "runtime_stubs", STUBS)

    class Greeter:
        def Greet(self, name):
            return f"hello {name}"

    app = Starlette()
    routes.template_routes(app.router, Greeter())
    client = TestClient(app)
    assert client.get("/greet/ada").text == "hello ada"
    assert client.get("/shout/ada").text == "ADA"
    assert client.post("/greet/ada").status_code == 405


def test_prefix_and_logger_options(tmp_path, monkeypatch, caplog):
    routes, templates = build(
        tmp_path, monkeypatch, "runtime_options", USERS, receiver_type="Server", path_prefix=True, logger=True
    )
    logger = logging.getLogger("runtime_options.app")
    app = Starlette()
    paths = routes.template_routes(app.router, templates.Server(), paths_prefix="/app", logger=logger)
    assert paths.GetUser(1) == "/app/user/1"
    assert paths.ReadNew() == "/app/new"

    with caplog.at_level(logging.DEBUG, logger="runtime_options.app"):
        r = TestClient(app).get("/boom")
    assert r.status_code == 500
    assert {rec.name for rec in caplog.records} >= {"runtime_options.app"}
