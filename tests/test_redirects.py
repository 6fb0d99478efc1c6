import pytest

from jinjamux.analysis.redirects import annotate_redirects, can_redirect
from jinjamux.definitions.definition import build_definitions
from jinjamux.fragments.fragment_set import FragmentSet


def check(source: str, **others: str) -> bool:
    fragments = FragmentSet.from_mapping({"GET /": source, **others})
    return can_redirect(fragments, "GET /", frozenset())


@pytest.mark.parametrize(
    "source",
    [
        "<p>{{ data.result().name }}</p>",
        "{% if data.ok() %}{{ data.result() }}{% else %}{{ data.err() }}{% endif %}",
        "{{ data.status_code(201) }}{{ data.header('X-Thing', 'yes') }}",
        "{{ data['result']() }}",
        "{{ data.result() | length }}",
        "{% for u in data.result() %}{{ u.name }}{% endfor %}",
        "{{ data.path().ReadIndex() }}",
        "plain text",
    ],
)
def test_harmless_templates(source):
    assert not check(source)


@pytest.mark.parametrize(
    "source",
    [
        "{{ data.redirect('/login') }}",
        "{{ user.redirect }}",
        "{{ data.something_else }}",
        "{{ data[key] }}",
        "{{ helper(data) }}",
        "{{ data | tojson }}",
        "{% if data is defined %}x{% endif %}",
        "{% set d = data %}",
        "{% with d = data %}{% endwith %}",
        "{% for x in data %}{% endfor %}",
        "{{ f(g().x) }}",
        "{% include name_from_context %}",
        "{% macro m(x) %}{{ x.redirect('/') }}{% endmacro %}",
    ],
)
def test_redirecting_templates(source):
    assert check(source)


def test_redirect_through_include():
    assert check('{% include "partial" %}', partial="{{ data.redirect('/x') }}")
    assert check('{% extends "layout" %}', layout="{{ data.redirect('/x') }}")
    assert not check('{% include "partial" %}', partial="{{ data.result() }}")


def test_include_cycles_terminate():
    assert not check('{% include "a" %}', a='{% include "b" %}', b='{% include "a" %}')
    assert check('{% include "a" %}', a='{% include "b" %}', b='{% include "a" %}{{ data.redirect("/") }}')


def test_include_of_unknown_template_is_harmless():
    assert not check('{% include "missing" ignore missing %}')


def test_annotate_definitions():
    fragments = FragmentSet.from_mapping(
        {
            "GET /a": "{{ data.redirect('/b') }}",
            "GET /b": "{{ data.result() }}",
        }
    )
    definitions = build_definitions(fragments)
    annotate_redirects(definitions, fragments)
    assert {d.path: d.can_redirect for d in definitions} == {"/a": True, "/b": False}
