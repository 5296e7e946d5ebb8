"""Tests for template interpolation and the execution context."""

from agentflow.engine.context import WorkflowContext
from agentflow.engine.interpolation import interpolate, resolve_token, stringify


def make_context(variables=None):
    return WorkflowContext("exec-1", variables or {})


class TestInterpolate:
    """Test cases for {{token}} substitution."""

    def test_replaces_variables(self):
        context = make_context({"name": "Ada", "count": 3})
        assert interpolate("Hi {{name}}, you have {{count}} items", context) == "Hi Ada, you have 3 items"

    def test_unknown_tokens_are_left_unchanged(self):
        context = make_context({"name": "Ada"})
        assert interpolate("{{name}} {{missing}}", context) == "Ada {{missing}}"

    def test_dotted_paths_are_not_resolved(self):
        context = make_context({"node": {"field": 1}})
        assert interpolate("{{node.field}}", context) == "{{node.field}}"

    def test_empty_template(self):
        assert interpolate("", make_context()) == ""
        assert interpolate(None, make_context()) == ""

    def test_text_without_tokens_is_unchanged(self):
        assert interpolate("plain text { not a token }", make_context({"a": 1})) == "plain text { not a token }"

    def test_variables_win_over_results(self):
        context = make_context({"response": "from input"})
        context.record_result("openai-1", {"response": "from node"})
        assert interpolate("{{response}}", context) == "from input"

    def test_node_id_lookup_returns_whole_result(self):
        context = make_context()
        context.record_result("code1", {"total": 2})
        assert interpolate("{{code1}}", context) == '{"total": 2}'

    def test_falls_back_to_newest_result_keys(self):
        context = make_context()
        context.record_result("first", {"response": "old"})
        context.record_result("second", {"response": "new"})
        assert interpolate("{{response}}", context) == "new"

    def test_non_mapping_results_are_skipped_in_fallback(self):
        context = make_context()
        context.record_result("first", {"response": "kept"})
        context.record_result("second", "just a string")
        assert interpolate("{{response}}", context) == "kept"


class TestStringify:
    """Test cases for value rendering."""

    def test_scalars(self):
        assert stringify(None) == ""
        assert stringify(True) == "true"
        assert stringify(False) == "false"
        assert stringify(1.5) == "1.5"
        assert stringify("x") == "x"

    def test_collections_render_as_json(self):
        assert stringify({"a": [1, 2]}) == '{"a": [1, 2]}'
        assert stringify([1, "b"]) == '[1, "b"]'


class TestWorkflowContext:
    """Test cases for result bookkeeping."""

    def test_recent_results_are_newest_first(self):
        context = make_context()
        context.record_result("a", 1)
        context.record_result("b", 2)
        context.record_result("a", 3)
        assert list(context.iter_recent_results()) == [("a", 3), ("b", 2)]

    def test_resolve_token_reports_missing(self):
        found, _ = resolve_token("nothing", make_context())
        assert found is False
