import pytest

from jinjamux.analysis.constraints import ValidationRule, find_control, parse_rules
from jinjamux.errors import GrammarError


def test_find_first_named_control():
    markup = """
    <form>
      <input name="other" min="3">
      <input name="age" type="number" min="1">
      <input name="age" min="99">
    </form>
    """
    assert find_control(markup, "age")["min"] == "1"
    assert find_control(markup, "missing") is None


def test_textarea_and_select_are_controls():
    assert find_control('<textarea name="bio" maxlength="140"></textarea>', "bio") == {
        "name": "bio",
        "maxlength": "140",
    }
    assert find_control('<select name="color"></select>', "color") == {"name": "color"}


def test_numeric_rules():
    rules = parse_rules('<input name="age" max="150" min="0">', "age", int)
    assert rules == [ValidationRule("min", "age", 0), ValidationRule("max", "age", 150)]
    assert rules[0].message == "age must not be less than 0"
    assert rules[1].message == "age must not be more than 150"

    rules = parse_rules('<input name="price" min="0.5">', "price", float)
    assert rules == [ValidationRule("min", "price", 0.5)]


def test_text_rules_keep_fixed_order():
    markup = '<input maxlength="20" name="login" pattern="[a-z]+" minlength="3">'
    rules = parse_rules(markup, "login", str)
    assert [r.kind for r in rules] == ["pattern", "minlength", "maxlength"]
    assert [r.message for r in rules] == [
        "login must match '[a-z]+'",
        "login is too short (the min length is 3)",
        "login is too long (the max length is 20)",
    ]


def test_dynamic_values_are_skipped():
    rules = parse_rules('<input name="age" min="{{ data.result().min }}" max="9">', "age", int)
    assert rules == [ValidationRule("max", "age", 9)]


def test_no_control_means_no_rules():
    assert parse_rules("<p>nothing here</p>", "age", int) == []


@pytest.mark.parametrize(
    "markup, field_type, message",
    [
        ('<input name="f" min="1">', str, "requires an int or float field"),
        ('<input name="f" pattern="x">', int, "requires a str field"),
        ('<input name="f" pattern="(">', str, "invalid pattern attribute"),
        ('<input name="f" min="one">', int, "failed to parse min attribute"),
        ('<input name="f" minlength="-1">', str, "must not be negative"),
    ],
)
def test_bad_constraints(markup, field_type, message):
    with pytest.raises(GrammarError) as exc:
        parse_rules(markup, "f", field_type)
    assert message in str(exc.value)
