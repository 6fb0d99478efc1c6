import pytest

from jinjamux.definitions.definition import build_definitions, new_definition
from jinjamux.errors import DuplicatePatternError, GrammarError
from jinjamux.fragments.fragment_set import Fragment, FragmentSet


def test_non_routes_are_skipped():
    fragments = FragmentSet.from_mapping(
        {
            "base.html": "<html>{% block body %}{% endblock %}</html>",
            "GET / Home()": "home",
        }
    )
    definitions = build_definitions(fragments)
    assert [d.pattern for d in definitions] == ["GET /"]
    assert definitions[0].call.callee == "Home"


def test_duplicate_patterns_are_rejected():
    fragments = FragmentSet.from_mapping({"GET /": "a", "get  / Index()": "b"})
    with pytest.raises(DuplicatePatternError) as exc:
        build_definitions(fragments)
    assert exc.value.pattern == "GET /"
    assert "duplicate route pattern: GET /" in str(exc.value)


def test_duplicate_error_names_both_sources():
    fragments = [
        Fragment("GET /x", "a", "templates/a.html"),
        Fragment("GET  /x", "b", "templates/b.html"),
    ]
    with pytest.raises(DuplicatePatternError) as exc:
        build_definitions(fragments)
    assert "templates/a.html" in str(exc.value)
    assert "templates/b.html" in str(exc.value)


def test_same_path_different_methods_are_allowed():
    fragments = FragmentSet.from_mapping({"GET /user": "", "POST /user": "", "/user": ""})
    assert len(build_definitions(fragments)) == 3


def test_sort_order_is_path_then_method():
    fragments = FragmentSet.from_mapping(
        {
            "POST /b": "",
            "GET /b": "",
            "GET /a/{id}": "",
            "DELETE /a/{id}": "",
            "/": "",
        }
    )
    assert [d.pattern for d in build_definitions(fragments)] == [
        "/",
        "DELETE /a/{id}",
        "GET /a/{id}",
        "GET /b",
        "POST /b",
    ]


def test_status_with_response_argument_is_rejected():
    with pytest.raises(GrammarError) as exc:
        new_definition("GET /x 201 Write(response)")
    assert "you can not use response as an argument and specify an HTTP status code" in str(exc.value)

    with pytest.raises(GrammarError):
        new_definition("GET /x 201 Outer(Inner(response))")


def test_call_scope_error_names_the_label():
    with pytest.raises(GrammarError) as exc:
        new_definition("GET /user/{id} GetUser(ctx, user_id)")
    assert "unknown argument user_id at index 1" in str(exc.value)
    assert exc.value.label == "GET /user/{id} GetUser(ctx, user_id)"


def test_definition_properties():
    d = new_definition("PATCH /todo/{id} Update(response, id)", source="todo.html", group="todo.html")
    assert d.method == "PATCH"
    assert d.path_params == ["id"]
    assert d.has_response_writer_arg
    assert d.path_type("id") is str
    assert d.location() == "todo.html: 'PATCH /todo/{id} Update(response, id)'"
