"""
Unit tests for sandboxed template expressions.
"""
import pytest

from livetrack_obs.exceptions import TemplateEvaluationError, TemplateSyntaxError
from livetrack_obs.templates.expression import (
    Evaluator,
    compile_template,
    lookup,
    render_template,
)
from livetrack_obs.templates.helpers import UNDEFINED


@pytest.fixture
def scope():
    return {
        "position": {"lat": 1, "lon": 2},
        "altitude": 100,
        "speed": 10,
        "name": "Ride",
        "laps": [3, 4, 5],
        "heartRate": None,
    }


class TestCompileTemplate:
    """Test template parsing."""

    def test_literal_only(self):
        compiled = compile_template("plain text")
        assert compiled.is_literal
        assert compiled.parts == ("plain text",)

    def test_splits_segments(self):
        compiled = compile_template("a ${speed} b")
        assert len(compiled.parts) == 3
        assert compiled.parts[0] == "a "
        assert compiled.parts[2] == " b"

    def test_escaped_marker(self, scope):
        assert render_template("$${speed} is ${speed}", scope) == "${speed} is 10"

    def test_braces_inside_strings(self, scope):
        assert render_template("${'{' + name + '}'}", scope) == "{Ride}"

    def test_cached_by_source(self):
        assert compile_template("${speed}") is compile_template("${speed}")

    @pytest.mark.parametrize("source", [
        "${speed",
        "${}",
        "${speed +}",
    ])
    def test_invalid_syntax(self, source):
        with pytest.raises(TemplateSyntaxError):
            compile_template(source)

    @pytest.mark.parametrize("source", [
        "${__import__('os')}",
        "${speed.__class__}",
        "${(lambda: 1)()}",
        "${[x for x in laps]}",
        "${name.upper()}",
        "${open('/etc/passwd')}",
        "${eval('1')}",
        "${f(*laps)}",
        "${b'raw'}",
    ])
    def test_forbidden_constructs(self, source):
        """Test unsafe or unsupported syntax is rejected at compile time."""
        with pytest.raises(TemplateSyntaxError):
            compile_template(source)

    @pytest.mark.parametrize("source", [
        "${" + "-" * 50000 + "1}",
        "${" + "(" * 500 + "1" + ")" * 500 + "}",
    ])
    def test_excessive_nesting(self, source):
        """Test parser depth limits surface as syntax errors."""
        with pytest.raises(TemplateSyntaxError):
            compile_template(source)


class TestEvaluation:
    """Test expression semantics."""

    def test_field_access(self, scope):
        assert render_template("${position.lat},${position.lon}", scope) == "1,2"
        assert render_template("${position}", scope) == '{"lat":1,"lon":2}'

    def test_arithmetic(self, scope):
        assert render_template("${altitude * 2 + 1}", scope) == "201"
        assert render_template("${speed / 4}", scope) == "2.5"
        assert render_template("${speed // 4}", scope) == "2"
        assert render_template("${speed % 4}", scope) == "2"
        assert render_template("${2 ** 3}", scope) == "8"

    def test_string_concatenation(self, scope):
        assert render_template("${name + ' ' + speed}", scope) == "Ride 10"

    def test_subscript(self, scope):
        assert render_template("${laps[0]}-${laps[-1]}", scope) == "3-5"
        assert render_template("${position['lat']}", scope) == "1"
        assert render_template("${laps[10]}", scope) == "undefined"

    def test_slice(self, scope):
        assert render_template("${name[0:2]}", scope) == "Ri"

    def test_helper_calls(self, scope):
        assert render_template("${round(altitude / METERS_PER_FOOT)}", scope) == "328"
        assert render_template("${pad_num(7)}", scope) == "07"
        assert render_template("${max(speed, altitude)}", scope) == "100"

    def test_keyword_arguments(self, scope):
        assert render_template("${format_duration(65, with_seconds=True)}", scope) == "00:01:05"

    def test_conditional_fallback(self, scope):
        """Test template authors can provide fallback text."""
        source = "${cadence if cadence != undefined else 'n/a'}"
        assert render_template(source, scope) == "n/a"
        assert render_template(source, {"cadence": 90}) == "90"

    def test_boolean_operators(self, scope):
        assert render_template("${cadence or '-'}", scope) == "-"
        assert render_template("${speed and name}", scope) == "Ride"
        assert render_template("${not speed}", scope) == "false"

    def test_comparisons(self, scope):
        assert render_template("${0 < speed <= 10}", scope) == "true"
        assert render_template("${3 in laps}", scope) == "true"
        assert render_template("${cadence > 1}", scope) == "false"

    def test_list_literal(self, scope):
        assert render_template("${[speed, altitude]}", scope) == "10,100"


class TestUndefinedHandling:
    """Test absent fields never crash evaluation."""

    def test_missing_field(self, scope):
        assert render_template("${cadence}", scope) == "undefined"

    def test_missing_nested_field(self):
        assert render_template("${position.lat},${position.lon}", {}) == "undefined,undefined"

    def test_null_is_undefined(self, scope):
        assert render_template("${heartRate}", scope) == "undefined"

    def test_arithmetic_on_missing_is_nan(self, scope):
        assert render_template("${round(cadence * 2)}", scope) == "NaN"

    def test_division_by_zero(self, scope):
        assert render_template("${speed / 0}", scope) == "Infinity"
        assert render_template("${0 / 0}", scope) == "NaN"
        assert render_template("${speed % 0}", scope) == "NaN"

    def test_non_mapping_scope(self):
        assert render_template("${speed}", None) == "undefined"
        assert render_template("${speed}", UNDEFINED) == "undefined"

    def test_fields_shadow_constants(self):
        assert render_template("${MPS_TO_KPH}", {"MPS_TO_KPH": 1}) == "1"


class TestEvaluatorErrors:
    """Test evaluation failures are reported as template errors."""

    def test_helper_type_error(self, scope):
        with pytest.raises(TemplateEvaluationError) as exc_info:
            render_template("${pad_num()}", scope)
        assert exc_info.value.template == "${pad_num()}"

    def test_unknown_function_in_custom_evaluator(self, scope):
        evaluator = Evaluator(functions={})
        with pytest.raises(TemplateEvaluationError):
            evaluator.render(compile_template("${round(speed)}"), scope)

    def test_zero_slice_step(self, scope):
        with pytest.raises(TemplateEvaluationError):
            render_template("${name[::0]}", scope)


class TestLookup:
    """Test field lookup rules."""

    def test_mapping(self):
        assert lookup({"a": 1}, "a") == 1
        assert lookup({"a": 1}, "b") is UNDEFINED

    def test_sequence(self):
        assert lookup([1, 2], 1) == 2
        assert lookup([1, 2], 2) is UNDEFINED
        assert lookup([1, 2], True) is UNDEFINED

    def test_other_types(self):
        assert lookup(42, "real") is UNDEFINED
