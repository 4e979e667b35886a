"""Unit tests for search query parsing."""

import pytest

from cohortsync.domain.ports import QueryError
from cohortsync.domain.search_query import And, Not, Or, Term, parse_query, positive_terms


class TestParseQuery:
    """Query grammar."""

    @pytest.mark.parametrize("query", [None, "", "   "])
    def test_empty_query_matches_everything(self, query):
        assert parse_query(query) is None

    def test_single_term_is_lowercased(self):
        assert parse_query("TB") == Term("tb")

    def test_adjacent_terms_are_anded(self):
        assert parse_query("TB patients") == And((Term("tb"), Term("patients")))

    def test_explicit_and_matches_implicit(self):
        assert parse_query("TB AND patients") == parse_query("TB patients")

    def test_or_binds_looser_than_and(self):
        assert parse_query("a b OR c") == Or((And((Term("a"), Term("b"))), Term("c")))

    def test_grouping(self):
        assert parse_query("(tb OR hiv) adults") == And((Or((Term("tb"), Term("hiv"))), Term("adults")))

    def test_not_and_minus(self):
        expected = And((Term("tb"), Not(Term("screening"))))
        assert parse_query("tb NOT screening") == expected
        assert parse_query("tb -screening") == expected

    def test_hyphen_inside_word_is_literal(self):
        assert parse_query("follow-up") == Term("follow-up")

    def test_phrase(self):
        assert parse_query('"TB Patients"') == Term("tb patients")

    def test_field_restriction(self):
        assert parse_query("name:TB") == Term("tb", field="name")
        assert parse_query('description:"on treatment"') == Term("on treatment", field="description")

    def test_field_name_is_case_insensitive(self):
        assert parse_query("Name:tb") == Term("tb", field="name")

    def test_trailing_wildcard_dropped(self):
        assert parse_query("TB*") == Term("tb")

    def test_lowercase_operators_are_terms(self):
        assert parse_query("tb or hiv") == And((Term("tb"), Term("or"), Term("hiv")))


class TestParseErrors:
    """Malformed queries raise QueryError with the offending position."""

    @pytest.mark.parametrize("query,position", [
        ("(tb", 0),
        ("tb)", 2),
        ('tb "open', 3),
        ("tb AND", 6),
        ("OR tb", 0),
        ("status:active", 0),
        ("name:", 0),
        ("()", 0),
        ('""', 0),
    ])
    def test_error_position(self, query, position):
        with pytest.raises(QueryError) as exc_info:
            parse_query(query)
        assert exc_info.value.query == query
        assert exc_info.value.position == position

    def test_unknown_field_suggests_quoting(self):
        with pytest.raises(QueryError) as exc_info:
            parse_query("HIV: Adults")
        assert "quote" in str(exc_info.value)

    def test_quoted_colon_is_literal(self):
        assert parse_query('"HIV: Adults"') == Term("hiv: adults")

    def test_error_details(self):
        with pytest.raises(QueryError) as exc_info:
            parse_query("(tb")
        assert exc_info.value.details == {"query": "(tb", "position": 0}


class TestPositiveTerms:
    """Terms that count towards relevance."""

    def test_negated_terms_excluded(self):
        terms = positive_terms(parse_query("tb (adults OR children) -screening"))
        assert [term.text for term in terms] == ["tb", "adults", "children"]

    def test_empty(self):
        assert positive_terms(None) == []
