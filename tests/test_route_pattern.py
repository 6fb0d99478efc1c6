import logging

import pytest

from jinjamux.definitions.pattern import normalize_label, parse_route_label
from jinjamux.errors import GrammarError


def test_parse_full_label():
    label = parse_route_label("GET example.com/user/{id} 200 GetUser(ctx, id)")
    assert label is not None
    assert label.method == "GET"
    assert label.host == "example.com"
    assert label.path == "/user/{id}"
    assert label.status_code == 200
    assert label.explicit_status
    assert label.call_text == "GetUser(ctx, id)"
    assert label.path_params == ["id"]
    assert label.pattern == "GET example.com/user/{id}"


def test_method_host_and_whitespace_are_normalized():
    label = parse_route_label("  post   Example.COM/users   CreateUser(ctx,   form) ")
    assert label is not None
    assert label.method == "POST"
    assert label.host == "example.com"
    assert label.pattern == "POST example.com/users"
    assert label.call_text == "CreateUser(ctx, form)"
    assert label.status_code == 200
    assert not label.explicit_status


def test_any_method_pattern_has_no_prefix():
    label = parse_route_label("/about")
    assert label is not None
    assert label.method == ""
    assert label.pattern == "/about"


def test_named_status_constants():
    assert parse_route_label("POST /user HTTPStatus.CREATED").status_code == 201
    assert parse_route_label("POST /user http.HTTPStatus.ACCEPTED").status_code == 202
    assert parse_route_label("DELETE /user/{id} 204 DeleteUser(id)").status_code == 204


def test_path_segments():
    label = parse_route_label("GET /files/{path...}")
    assert [s.kind for s in label.segments] == ["literal", "wildcard"]
    assert label.path_params == ["path"]

    exact = parse_route_label("GET /users/{$}")
    assert exact.exact
    assert not exact.subtree

    subtree = parse_route_label("GET /static/")
    assert subtree.subtree
    assert not subtree.exact


def test_normalization_is_idempotent():
    names = [
        "get /",
        "GET  example.com/a/{b}/c  201 F(b)",
        "PATCH /x/{y...}",
        "/{$}",
        "delete  API.example.com:8080/item/{id} http.HTTPStatus.NO_CONTENT",
    ]
    for name in names:
        pattern = parse_route_label(name).pattern
        assert parse_route_label(pattern).pattern == pattern
        assert normalize_label(pattern) == pattern


def test_template_names_are_not_routes():
    assert parse_route_label("base.html") is None
    assert parse_route_label("partials/nav.html") is None
    assert parse_route_label("layout") is None
    assert parse_route_label("") is None


def test_dotless_host_is_logged_as_not_a_route(caplog):
    with caplog.at_level(logging.DEBUG, logger="jinjamux.definitions.pattern"):
        assert parse_route_label("GET localhost/x") is None
    assert "host 'localhost' has neither a dot nor a port" in caplog.text

    label = parse_route_label("GET localhost:8000/x")
    assert label is not None
    assert label.host == "localhost:8000"


def test_unknown_method():
    with pytest.raises(GrammarError) as exc:
        parse_route_label("FETCH /")
    assert "FETCH method not allowed" in str(exc.value)


@pytest.mark.parametrize(
    "name, message",
    [
        ("GET /a//b", "empty path segment"),
        ("GET /x/{id}/{id}", "forbidden repeated path parameter names: id"),
        ("GET /x/{request}", "the name request is not allowed as a path parameter it is already in scope"),
        ("GET /x/{receiver}", "already in scope"),
        ("GET /x/{self}", "self names the URL builder instance"),
        ("GET /x/{1st}", "path parameter name not permitted"),
        ("GET /x/{_hidden}", "must not start with an underscore"),
        ("GET /x/{rest...}/y", "wildcard not at end"),
        ("GET /x/{$}/y", "{$} not at end"),
        ("GET /x/a{id}", "must be a whole segment"),
        ("GET / 99", "out of range"),
        ("GET / HTTPStatus.NOPE", "unknown HTTPStatus constant"),
    ],
)
def test_grammar_errors(name, message):
    with pytest.raises(GrammarError) as exc:
        parse_route_label(name)
    assert message in str(exc.value)
    assert exc.value.label == name
