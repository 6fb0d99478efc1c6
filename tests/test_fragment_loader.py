from pathlib import Path
import textwrap

import pytest
from jinja2 import Environment

from jinjamux.errors import FragmentDefinitionError
from jinjamux.fragments.fragment_set import FragmentSet
from jinjamux.fragments.loader import FragmentFileLoader, split_fragments


def write(p: Path, s: str) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(textwrap.dedent(s), encoding="utf-8")


def test_split_fragments():
    source = """
    <h1>page</h1>
    {# define "GET /users ListUsers(ctx)" #}
    <ul>{% for u in data.result() %}<li>{{ u }}</li>{% endfor %}</ul>
    {# end #}
    {#- define 'GET /about' -#}about{#- end -#}
    """
    fragments = split_fragments(textwrap.dedent(source))
    assert list(fragments) == ["GET /users ListUsers(ctx)", "GET /about"]
    assert "<ul>" in fragments["GET /users ListUsers(ctx)"]
    assert fragments["GET /about"] == "about"


def test_split_fragments_errors():
    with pytest.raises(FragmentDefinitionError) as exc:
        split_fragments('{# define "a" #}x', filename="x.html")
    assert "has no end marker" in str(exc.value)

    with pytest.raises(FragmentDefinitionError) as exc:
        split_fragments('{# define "a" #}{# define "b" #}{# end #}{# end #}')
    assert "nested" in str(exc.value)

    with pytest.raises(FragmentDefinitionError) as exc:
        split_fragments('{# define "a" #}1{# end #}{# define "a" #}2{# end #}')
    assert "defined more than once" in str(exc.value)


def test_loader_indexes_files_and_blocks(tmp_path: Path):
    write(tmp_path / "index.html", '{# define "GET /{$}" #}<h1>home</h1>{# end #}')
    write(tmp_path / "users" / "user-profile.html", '{# define "GET /profile/{name}" #}{{ name }}{# end #}')
    write(tmp_path / "notes.txt", '{# define "GET /ignored" #}{# end #}')

    env = Environment(loader=FragmentFileLoader(tmp_path), autoescape=True)
    assert env.list_templates() == ["GET /profile/{name}", "GET /{$}", "index.html", "users/user-profile.html"]
    assert env.get_template("GET /{$}").render() == "<h1>home</h1>"

    fragments = FragmentSet(env)
    assert fragments.get("GET /profile/{name}").group == "user-profile.html"
    assert fragments.get("index.html").group == "index.html"
    assert "GET /ignored" not in fragments
    assert fragments.tree("GET /{$}") is not None


def test_loader_rejects_fragment_in_two_files(tmp_path: Path):
    write(tmp_path / "a.html", '{# define "GET /" #}a{# end #}')
    write(tmp_path / "b.html", '{# define "GET /" #}b{# end #}')

    env = Environment(loader=FragmentFileLoader(tmp_path))
    with pytest.raises(FragmentDefinitionError) as exc:
        env.list_templates()
    assert "defined in both" in str(exc.value)


def test_fragment_set_from_mapping():
    fragments = FragmentSet.from_mapping({"GET /": "hi", "base.html": "<html></html>"})
    assert fragments.names() == ["GET /", "base.html"]
    assert len(fragments) == 2
    assert [f.name for f in fragments] == ["GET /", "base.html"]
    assert fragments.get("GET /").group == ""
    assert fragments.get("nope") is None
