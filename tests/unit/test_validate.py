"""
Unit tests for argument validation.

Tests cover:
- Name and boolean checks
- Index specs, rename rules and query parsing
- Record list checks
- Error details on InvalidArgumentError
"""

import pytest

from versadb.core import validate
from versadb.core.validate import DeleteQuery, RenameRule, SelectQuery
from versadb.errors import InvalidArgumentError


class TestNames:
    """Tests for name checks."""

    def test_valid_name(self):
        """A non-blank string is accepted."""
        assert validate.check_name("users", "name") == "users"

    @pytest.mark.parametrize("value", ["", "   ", None, 5, ["users"]])
    def test_invalid_name(self, value):
        """Blank or non-string names are rejected."""
        with pytest.raises(InvalidArgumentError) as exc:
            validate.check_name(value, "name")
        assert exc.value.argument == "name"
        assert exc.value.code == "INVALID_ARGUMENT"

    def test_check_bool(self):
        """Only real booleans pass."""
        assert validate.check_bool(True, "flag") is True
        with pytest.raises(InvalidArgumentError):
            validate.check_bool(1, "flag")

    def test_check_names_requires_strings(self):
        """Every entry must be a string."""
        assert validate.check_names(["a", "b"], "names") == ["a", "b"]
        with pytest.raises(InvalidArgumentError):
            validate.check_names(["a", 2], "names")

    def test_check_names_rejects_plain_string(self):
        """A bare string is not a list of names."""
        with pytest.raises(InvalidArgumentError):
            validate.check_names("abc", "names")


class TestFields:
    """Tests for projection field checks."""

    def test_none_means_no_projection(self):
        assert validate.check_fields(None) is None

    def test_blank_fields_dropped(self):
        """Blank names are ignored."""
        assert validate.check_fields(["a", " ", ""]) == ["a"]

    def test_all_blank_means_no_projection(self):
        assert validate.check_fields(["", "  "]) is None

    def test_non_string_field_rejected(self):
        with pytest.raises(InvalidArgumentError):
            validate.check_fields(["a", 3])


class TestRecords:
    """Tests for record checks."""

    def test_record_must_be_mapping(self):
        with pytest.raises(InvalidArgumentError):
            validate.check_record(["not", "a", "record"])

    @pytest.mark.parametrize("field", [1, None, ("a", "b")])
    def test_field_names_must_be_strings(self, field):
        with pytest.raises(InvalidArgumentError):
            validate.check_record({"a": 1, field: "x"})
        with pytest.raises(InvalidArgumentError):
            validate.check_records([{"a": 1}, {field: "x"}])

    def test_records_must_not_be_empty(self):
        """insert_many needs at least one record."""
        with pytest.raises(InvalidArgumentError):
            validate.check_records([])

    def test_records_must_hold_mappings(self):
        with pytest.raises(InvalidArgumentError):
            validate.check_records([{"a": 1}, "b"])

    def test_records_are_copied(self):
        original = {"a": 1}
        result = validate.check_records([original])
        assert result == [{"a": 1}]
        assert result[0] is not original


class TestIndexSpecs:
    """Tests for index spec parsing."""

    def test_unique_defaults_to_false(self):
        specs = validate.parse_index_specs([{"name": "email"}])
        assert specs[0].name == "email"
        assert specs[0].unique is False

    def test_non_bool_unique_falls_back(self):
        """A uniqueness flag that is not a boolean is treated as False."""
        specs = validate.parse_index_specs([{"name": "email", "unique": "yes"}])
        assert specs[0].unique is False

    def test_string_shorthand(self):
        specs = validate.parse_index_specs(["email", {"name": "id", "unique": True}])
        assert [(s.name, s.unique) for s in specs] == [("email", False), ("id", True)]

    def test_blank_name_rejected(self):
        """Whitespace-only index names are rejected."""
        with pytest.raises(InvalidArgumentError) as exc:
            validate.parse_index_specs([{"name": "   "}])
        assert exc.value.errors

    def test_non_string_name_rejected(self):
        with pytest.raises(InvalidArgumentError):
            validate.parse_index_specs([{"name": 7}])

    def test_non_object_entry_rejected(self):
        with pytest.raises(InvalidArgumentError):
            validate.parse_index_specs([3])


class TestQueries:
    """Tests for rename rules and query models."""

    def test_rename_rule_accepts_camel_case(self):
        rule = validate.parse_models(RenameRule, [{"oldName": "a", "newName": "b"}], "rename")[0]
        assert (rule.old_name, rule.new_name, rule.unique) == ("a", "b", False)

    def test_rename_rule_requires_both_names(self):
        with pytest.raises(InvalidArgumentError):
            validate.parse_models(RenameRule, [{"old_name": "a"}], "rename")

    def test_select_query_fields(self):
        query = validate.parse_models(
            SelectQuery, [{"index": "email", "value": "a", "fields": ["name"]}], "queries"
        )[0]
        assert query.fields == ["name"]

    def test_select_query_non_list_fields_ignored(self):
        query = SelectQuery.model_validate({"index": "email", "value": "a", "fields": "name"})
        assert query.fields == []

    def test_delete_query_aliases(self):
        queries = validate.parse_models(
            DeleteQuery,
            [{"index": "a", "value": 1, "all": True}, {"index": "b", "value": 2}],
            "queries",
        )
        assert [q.delete_all for q in queries] == [True, False]

    def test_empty_not_allowed(self):
        with pytest.raises(InvalidArgumentError):
            validate.parse_models(SelectQuery, [], "queries", allow_empty=False)

    def test_models_pass_through(self):
        """Already-parsed models are accepted as is."""
        query = DeleteQuery(index="a", value=1)
        assert validate.parse_models(DeleteQuery, [query], "queries") == [query]
