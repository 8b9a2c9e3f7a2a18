"""Tests for azext_nucleus.parsers.bicepparam."""

import pytest
from knack.util import CLIError

from azext_nucleus.parsers.bicepparam import (
    BicepExpression,
    BicepParamError,
    load_bicepparam,
    parse_bicep_defaults,
    parse_bicepparam,
    to_plain,
)


# ======================================================================
# Statements
# ======================================================================


class TestUsingDirective:

    def test_using_path(self):
        parsed = parse_bicepparam("using '../../main.bicep'\n")
        assert parsed.using == "../../main.bicep"

    def test_using_none(self):
        parsed = parse_bicepparam("using none\nparam a = 1\n")
        assert parsed.using == ""
        assert parsed.params == {"a": 1}

    def test_missing_using_is_none(self):
        assert parse_bicepparam("param a = 1").using is None

    def test_duplicate_using_raises(self):
        with pytest.raises(BicepParamError, match="Duplicate 'using'"):
            parse_bicepparam("using 'a.bicep'\nusing 'b.bicep'\n")

    def test_resolved_template(self, tmp_path):
        config_dir = tmp_path / "config" / "ms.apim"
        config_dir.mkdir(parents=True)
        path = config_dir / "parameters.dev.bicepparam"
        path.write_text("using '../../main.bicep'\n", encoding="utf-8")

        parsed = load_bicepparam(path)
        assert parsed.resolved_template() == (tmp_path / "main.bicep").resolve()

    def test_resolved_template_from_string_is_none(self):
        assert parse_bicepparam("using 'main.bicep'").resolved_template() is None


class TestScalarValues:

    def test_strings_ints_bools_null(self):
        parsed = parse_bicepparam(
            "param name = 'apim-nucleus-dev'\n"
            "param capacity = 2\n"
            "param offset = -1\n"
            "param enabled = true\n"
            "param disabled = false\n"
            "param nothing = null\n"
        )
        assert parsed.params == {
            "name": "apim-nucleus-dev",
            "capacity": 2,
            "offset": -1,
            "enabled": True,
            "disabled": False,
            "nothing": None,
        }

    def test_escapes(self):
        parsed = parse_bicepparam(r"param msg = 'it\'s a \\path\\ with \$ sign'")
        assert parsed.params["msg"] == "it's a \\path\\ with $ sign"

    def test_unicode_escape(self):
        parsed = parse_bicepparam(r"param sym = '\u{20AC}'")
        assert parsed.params["sym"] == "€"

    def test_comment_markers_inside_strings_are_literal(self):
        parsed = parse_bicepparam("param url = 'https://dxc.com/a = [b]' // trailing comment\n")
        assert parsed.params["url"] == "https://dxc.com/a = [b]"

    def test_multiline_string(self):
        parsed = parse_bicepparam("param policy = '''\n<policies>\n  <inbound />\n</policies>'''\n")
        assert parsed.params["policy"] == "<policies>\n  <inbound />\n</policies>"

    def test_param_lines_recorded(self):
        parsed = parse_bicepparam("using 'main.bicep'\n\nparam a = 1\n// note\nparam b = 2\n")
        assert parsed.param_lines == {"a": 3, "b": 5}


class TestCollections:

    def test_multiline_object(self):
        parsed = parse_bicepparam(
            "param tags = {\n"
            "  environment: 'dev'\n"
            "  'cost-center': 'CC-42'\n"
            "  nested: {\n"
            "    enabled: true\n"
            "  }\n"
            "}\n"
        )
        assert parsed.params["tags"] == {
            "environment": "dev",
            "cost-center": "CC-42",
            "nested": {"enabled": True},
        }

    def test_multiline_array(self):
        parsed = parse_bicepparam("param zones = [\n  '1'\n  '2'\n  '3'\n]\n")
        assert parsed.params["zones"] == ["1", "2", "3"]

    def test_comma_separated_array(self):
        parsed = parse_bicepparam("param ports = [80, 443]\n")
        assert parsed.params["ports"] == [80, 443]

    def test_array_of_objects_with_comments(self):
        parsed = parse_bicepparam(
            "param backends = [\n"
            "  // primary\n"
            "  { name: 'a', url: 'https://a' }\n"
            "  /* secondary */ { name: 'b', url: 'https://b' }\n"
            "]\n"
        )
        assert parsed.params["backends"] == [
            {"name": "a", "url": "https://a"},
            {"name": "b", "url": "https://b"},
        ]

    def test_unterminated_array_raises(self):
        with pytest.raises(BicepParamError, match="Expected ']'"):
            parse_bicepparam("param zones = [\n  '1'\n")


class TestExpressions:

    def test_function_call_kept_verbatim(self):
        parsed = parse_bicepparam("param location = resourceGroup().location\n")
        assert parsed.params["location"] == BicepExpression("resourceGroup().location")

    def test_interpolated_string_is_expression(self):
        parsed = parse_bicepparam("param name = 'apim-${environment}-01'\n")
        value = parsed.params["name"]
        assert isinstance(value, BicepExpression)
        assert value.text == "'apim-${environment}-01'"

    def test_operator_expression(self):
        parsed = parse_bicepparam("param total = 1 + 2\n")
        assert parsed.params["total"] == BicepExpression("1 + 2")

    def test_expression_with_nested_strings(self):
        parsed = parse_bicepparam("param id = concat('a)', 'b')\nparam next = 1\n")
        assert parsed.params["id"] == BicepExpression("concat('a)', 'b')")
        assert parsed.params["next"] == 1

    def test_variables_are_substituted(self):
        parsed = parse_bicepparam("var prefix = 'nuc'\nparam name = prefix\n")
        assert parsed.params["name"] == "nuc"
        assert parsed.variables == {"prefix": "nuc"}

    def test_to_plain_renders_expressions(self):
        value = {"a": [BicepExpression("x()")], "b": 1}
        assert to_plain(value) == {"a": ["x()"], "b": 1}


class TestReadEnvironmentVariable:

    def test_value_from_env(self):
        parsed = parse_bicepparam(
            "param email = readEnvironmentVariable('APIM_EMAIL', 'ops@dxc.com')",
            env={"APIM_EMAIL": "team@dxc.com"},
        )
        assert parsed.params["email"] == "team@dxc.com"

    def test_default_when_unset(self):
        parsed = parse_bicepparam("param email = readEnvironmentVariable('APIM_EMAIL', 'ops@dxc.com')", env={})
        assert parsed.params["email"] == "ops@dxc.com"

    def test_unset_without_default_raises(self):
        with pytest.raises(BicepParamError, match="APIM_EMAIL"):
            parse_bicepparam("param email = readEnvironmentVariable('APIM_EMAIL')", env={})

    def test_dynamic_name_is_expression(self):
        parsed = parse_bicepparam("param x = readEnvironmentVariable(name)", env={})
        assert isinstance(parsed.params["x"], BicepExpression)


class TestErrors:

    def test_duplicate_param(self):
        with pytest.raises(BicepParamError, match="Duplicate parameter 'sku'"):
            parse_bicepparam("param sku = 'Developer'\nparam sku = 'Premium'\n")

    def test_unknown_statement(self):
        with pytest.raises(BicepParamError, match="Unexpected statement 'resource'"):
            parse_bicepparam("resource foo 'x@1' = {}\n")

    def test_trailing_separator(self):
        with pytest.raises(BicepParamError, match="Expected end of line"):
            parse_bicepparam("param a = 'x',\n")

    def test_unterminated_string_position(self):
        with pytest.raises(BicepParamError) as exc_info:
            parse_bicepparam("param a = 'open", path="p.bicepparam")
        err = exc_info.value
        assert (err.line, err.column) == (1, 11)
        assert str(err).startswith("p.bicepparam:1:11:")

    def test_error_is_cli_error(self):
        with pytest.raises(CLIError):
            parse_bicepparam("param = 1")

    def test_missing_file(self, tmp_path):
        with pytest.raises(CLIError, match="Cannot read parameter file"):
            load_bicepparam(tmp_path / "missing.bicepparam")

    def test_invalid_utf8(self, tmp_path):
        path = tmp_path / "parameters.dev.bicepparam"
        path.write_bytes(b"\xff\xfeparam a = 1\n")
        with pytest.raises(CLIError, match="Cannot read parameter file"):
            load_bicepparam(path)


class TestImportsAndMetadata:

    def test_imports_recorded(self):
        parsed = parse_bicepparam(
            "using 'main.bicep'\n"
            "import { naming } from 'shared.bicep'\n"
            "metadata owner = 'platform'\n"
            "param a = 1\n"
        )
        assert parsed.imports == ["import { naming } from 'shared.bicep'", "metadata owner = 'platform'"]
        assert parsed.params == {"a": 1}

    def test_pragmas_are_skipped(self):
        parsed = parse_bicepparam(
            "#disable-diagnostics no-unused-params\n"
            "using 'main.bicep'\n"
            "  #disable-next-line no-hardcoded-env-urls\n"
            "param url = 'https://management.azure.com'\n"
            "param tags = {\n"
            "  #disable-next-line prefer-unquoted-property-names\n"
            "  'owner': '#platform'\n"
            "}\n"
        )
        assert parsed.using == "main.bicep"
        assert parsed.params == {"url": "https://management.azure.com", "tags": {"owner": "#platform"}}


class TestToDict:

    def test_to_dict(self):
        parsed = parse_bicepparam("using 'main.bicep'\nparam a = concat('x')\nparam b = 'y'\n", path="f.bicepparam")
        assert parsed.to_dict() == {
            "path": "f.bicepparam",
            "using": "main.bicep",
            "parameters": {"a": "concat('x')", "b": "y"},
        }
        assert "b" in parsed
        assert parsed.get("missing", 5) == 5


# ======================================================================
# Template defaults
# ======================================================================


class TestParseBicepDefaults:

    def test_defaults_only(self):
        text = (
            "param name string\n"
            "param sku string = 'Developer'\n"
            "param capacity int = 1\n"
            "@allowed([\n  'a'\n])\n"
            "param location string = resourceGroup().location\n"
            "var ignored = 'x'\n"
        )
        assert parse_bicep_defaults(text) == {
            "sku": "Developer",
            "capacity": 1,
            "location": BicepExpression("resourceGroup().location"),
        }

    def test_object_default(self):
        text = "param tags object = {\n  env: 'dev'\n}\n"
        assert parse_bicep_defaults(text) == {"tags": {"env": "dev"}}
